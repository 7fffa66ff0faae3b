"""
Voice Activity Detection — Silero VAD classifier and speech segmenter.

The segmenter walks the recording in fixed 100 ms windows, asks the
classifier for a speech probability per window and groups consecutive
speech windows into SpeechSegments:
  - up to 200 ms of trailing silence (hangover) stays inside a segment
  - segments longer than 60s are force-split into 2s pieces
  - segments shorter than 1.01s are zero-padded for the ASR model
"""

import math
import logging
import threading
import numpy as np
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from .errors import ModelLoadError, PipelineCancelled, StreamBoundaryError

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000

_SILENCE = "silence"
_SPEECH = "speech"
_BOUNDARY = "boundary"


@dataclass
class SpeechSegment:
    """A span of speech with absolute timestamps and its samples."""
    start_time: float
    end_time: float
    samples: np.ndarray  # Float32 PCM, may carry trailing zero padding

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def __repr__(self):
        return (f"SpeechSegment({self.start_time:.2f}–{self.end_time:.2f}s, "
                f"{len(self.samples)} samples)")


class SileroVADClassifier:
    """
    Speech probability for one window, using a Silero VAD ONNX model.

    The model is recurrent: call ``reset()`` before a new recording and
    feed windows strictly in order. One instance must not be shared by
    concurrent runs.
    """

    def __init__(self, model_path, sample_rate: int = SAMPLE_RATE, threads: int = 1):
        self.model_path = Path(model_path) if model_path else None
        self.sample_rate = sample_rate
        self.threads = threads

        # Lazy-loaded
        self._session = None
        self._invalid_argument = None
        self._uses_state = False
        self._state = None
        self._h = None
        self._c = None

    def load(self):
        """Load the ONNX model on first use."""
        if self._session is not None:
            return

        if self.model_path is None or not self.model_path.is_file():
            raise ModelLoadError(f"VAD model not found: {self.model_path}")

        import onnxruntime as ort
        from onnxruntime.capi.onnxruntime_pybind11_state import InvalidArgument

        logger.info(f"Loading Silero VAD model from {self.model_path}...")
        options = ort.SessionOptions()
        options.inter_op_num_threads = 1
        options.intra_op_num_threads = self.threads
        try:
            self._session = ort.InferenceSession(
                str(self.model_path),
                sess_options=options,
                providers=["CPUExecutionProvider"],
            )
        except Exception as e:
            raise ModelLoadError(
                f"Failed to load VAD model {self.model_path}: {e}"
            ) from e

        self._invalid_argument = InvalidArgument
        # v5 exports carry a single "state" tensor, v4 exports carry h/c
        input_names = {i.name for i in self._session.get_inputs()}
        self._uses_state = "state" in input_names
        self.reset()
        logger.info("Silero VAD loaded successfully.")

    def reset(self):
        """Clear the recurrent state."""
        if self._uses_state:
            self._state = np.zeros((2, 1, 128), dtype=np.float32)
        else:
            self._h = np.zeros((2, 1, 64), dtype=np.float32)
            self._c = np.zeros((2, 1, 64), dtype=np.float32)

    def __call__(self, chunk: np.ndarray) -> float:
        self.load()

        feeds = {
            "input": np.asarray(chunk, dtype=np.float32).reshape(1, -1),
            "sr": np.array(self.sample_rate, dtype=np.int64),
        }
        if self._uses_state:
            feeds["state"] = self._state
        else:
            feeds["h"] = self._h
            feeds["c"] = self._c

        try:
            outputs = self._session.run(None, feeds)
        except self._invalid_argument as e:
            raise StreamBoundaryError(str(e)) from e

        if self._uses_state:
            prob, self._state = outputs[0], outputs[1]
        else:
            prob, self._h, self._c = outputs[0], outputs[1], outputs[2]
        return float(np.asarray(prob).reshape(-1)[0])


class VADSegmenter:
    """
    Groups classified 100 ms windows into SpeechSegments.

    Usage:
        segmenter = VADSegmenter(config.vad)
        segments = segmenter.segment(samples, classifier)
    """

    def __init__(self, config, sample_rate: int = SAMPLE_RATE):
        self.sample_rate = sample_rate
        self.threshold = getattr(config, "threshold", 0.35)
        self.chunk_size = int(getattr(config, "chunk_sec", 0.1) * sample_rate)
        self.hangover_samples = getattr(config, "hangover_samples", 3200)
        self.tail_silence_sec = getattr(config, "tail_silence_sec", 1.0)
        self.max_segment_sec = getattr(config, "max_segment_sec", 60.0)
        self.split_sec = getattr(config, "split_sec", 2.0)
        self.min_segment_sec = getattr(config, "min_segment_sec", 1.01)

        pad_extra = getattr(config, "pad_extra_samples", 100)
        self.min_segment_samples = int(sample_rate * self.min_segment_sec) + pad_extra
        self.split_samples = int(self.split_sec * sample_rate)

    def segment(
        self,
        samples: np.ndarray,
        classify: Callable[[np.ndarray], float],
        progress_cb: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SpeechSegment]:
        """
        Split a mono recording into speech segments.

        Args:
            samples: Float32 mono samples at ``sample_rate``.
            classify: Returns the speech probability of one window. May
                raise StreamBoundaryError near the end of the stream.
            progress_cb: Called with the fraction of windows processed.
            cancel_event: Checked before every window.

        Returns:
            SpeechSegments sorted by start time, never overlapping.
        """
        reset = getattr(classify, "reset", None)
        if callable(reset):
            reset()

        tail = np.zeros(int(self.sample_rate * self.tail_silence_sec), dtype=np.float32)
        audio = np.concatenate([np.asarray(samples, dtype=np.float32).ravel(), tail])

        cs = self.chunk_size
        total = math.ceil(len(audio) / cs)
        logger.info(
            f"Running VAD on {len(samples) / self.sample_rate:.1f}s audio "
            f"({total} windows)..."
        )

        segments: List[SpeechSegment] = []
        is_speech = False
        start_time = 0.0
        pending: List[np.ndarray] = []
        hangover = 0
        force_close = False

        for index in range(total):
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled(f"VAD cancelled at window {index}/{total}")

            chunk = audio[index * cs:(index + 1) * cs]
            window_time = index * cs / self.sample_rate
            status = self._classify(classify, chunk, window_time)

            if status == _BOUNDARY:
                # Counts as speech; the next silent window closes the segment
                if is_speech:
                    pending.append(chunk)
                    hangover = 0
                    force_close = True
            elif status == _SPEECH:
                hangover = 0
                force_close = False
                pending.append(chunk)
                if not is_speech:
                    start_time = window_time
                    is_speech = True
            elif is_speech:
                if not force_close and hangover < self.hangover_samples:
                    hangover += cs
                    pending.append(chunk)
                else:
                    segments.extend(
                        self.close_segment(start_time, window_time, np.concatenate(pending))
                    )
                    is_speech = False
                    hangover = 0
                    force_close = False
                    pending = []

            if progress_cb:
                progress_cb((index + 1) / total)

        if is_speech and pending:
            end_time = len(audio) / self.sample_rate
            segments.extend(self.close_segment(start_time, end_time, np.concatenate(pending)))

        speech_duration = sum(s.duration for s in segments)
        logger.info(
            f"VAD complete: {len(segments)} speech segments ({speech_duration:.1f}s)"
        )
        return segments

    def close_segment(
        self, start_time: float, end_time: float, samples: np.ndarray
    ) -> List[SpeechSegment]:
        """Apply the split/pad policy to one finished span of speech."""
        duration = len(samples) / self.sample_rate

        if duration > self.max_segment_sec:
            logger.warning(
                f"Found a {duration:.2f}s segment at {start_time:.1f}s-{end_time:.1f}s "
                f"which is longer than {self.max_segment_sec:.1f}s. "
                f"Forced slicing into {self.split_sec:.1f}s pieces..."
            )
            pieces = []
            for idx, offset in enumerate(range(0, len(samples), self.split_samples)):
                piece = samples[offset:offset + self.split_samples]
                piece_start = start_time + idx * self.split_sec
                piece_end = piece_start + len(piece) / self.sample_rate
                pieces.append(SpeechSegment(piece_start, piece_end, self._pad(piece)))
            return pieces

        if duration < self.min_segment_sec:
            logger.warning(
                f"Found a {duration:.2f}s segment at {start_time:.1f}s-{end_time:.1f}s "
                f"which is shorter than {self.min_segment_sec:.2f}s. "
                f"Extending to {self.min_segment_sec:.2f}s..."
            )
            return [SpeechSegment(start_time, end_time, self._pad(samples))]

        return [SpeechSegment(start_time, end_time, samples)]

    def _pad(self, samples: np.ndarray) -> np.ndarray:
        """Zero-pad up to the minimum length the ASR model accepts."""
        missing = self.min_segment_samples - len(samples)
        if missing <= 0:
            return samples
        return np.concatenate([samples, np.zeros(missing, dtype=np.float32)])

    def _classify(self, classify, chunk: np.ndarray, window_time: float) -> str:
        try:
            prob = float(classify(chunk))
        except StreamBoundaryError as e:
            logger.warning(
                f"Got an invalid-argument error from the VAD model at {window_time:.1f}s. "
                f"This is normal at the end of the audio: {e}"
            )
            return _BOUNDARY
        except Exception as e:
            logger.error(f"VAD error at {window_time:.1f}s, treating window as silence: {e}")
            return _SILENCE

        return _SPEECH if prob > self.threshold else _SILENCE
