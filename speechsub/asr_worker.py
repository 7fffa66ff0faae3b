"""
ASR Worker — Speech-to-text using Faster-Whisper.

Uses the CTranslate2 backend with INT8 quantization for efficient
CPU-based transcription. One model instance is loaded once and reused
for every speech segment produced by VAD.

Timestamps are returned as 10 ms ticks relative to the start of the
segment; TranscriptAssembler maps them onto the recording timeline.
"""

import os
import logging
import numpy as np
from dataclasses import dataclass
from pathlib import Path
from typing import List

from .errors import ModelLoadError, TranscriptionError

logger = logging.getLogger(__name__)


@dataclass
class TranscriptFragment:
    """One piece of recognised text, timed relative to its segment."""
    start_tick: int  # 10 ms units
    end_tick: int
    text: str

    def __repr__(self):
        return (f"TranscriptFragment({self.start_tick}–{self.end_tick}, "
                f"'{self.text[:40]}')")


def seconds_to_ticks(seconds: float) -> int:
    return int(round(seconds * 100))


class ASRWorker:
    """
    Automatic Speech Recognition using Faster-Whisper.

    Features:
      - INT8 quantized inference for CPU efficiency
      - Lazy model loading, accepts a size name or a local model directory
      - Fixed language and optional initial prompt for every segment
      - Independent segments (no conditioning on previous text)
    """

    def __init__(self, config):
        self.model = getattr(config, "model", "large-v3-turbo")
        self.device = getattr(config, "device", "cpu")
        self.compute_type = getattr(config, "compute_type", "int8")
        self.beam_size = getattr(config, "beam_size", 1)
        self.language = getattr(config, "language", "zh") or None
        self.initial_prompt = getattr(config, "initial_prompt", "") or None

        # Thread count: 0 = auto-detect
        raw_threads = getattr(config, "threads", 0)
        if raw_threads <= 0:
            self.cpu_threads = os.cpu_count() or 4
            logger.info(f"Auto-detected {self.cpu_threads} CPU threads")
        else:
            self.cpu_threads = raw_threads

        # Lazy-loaded
        self._model = None

    def load(self):
        """Load the Faster-Whisper model on first use."""
        if self._model is not None:
            return

        # Bare size names are resolved by faster-whisper itself
        looks_like_path = os.sep in str(self.model) or str(self.model).startswith(".")
        if looks_like_path and not Path(self.model).exists():
            raise ModelLoadError(f"Speech-to-text model not found: {self.model}")

        from faster_whisper import WhisperModel

        logger.info(
            f"Loading Faster-Whisper model '{self.model}' "
            f"(compute_type={self.compute_type}, threads={self.cpu_threads})"
        )

        try:
            self._model = WhisperModel(
                str(self.model),
                device=self.device,
                compute_type=self.compute_type,
                cpu_threads=self.cpu_threads
            )
        except Exception as e:
            raise ModelLoadError(
                f"Failed to load speech-to-text model '{self.model}': {e}"
            ) from e

        logger.info("Faster-Whisper model loaded successfully.")

    def transcribe(self, segment) -> List[TranscriptFragment]:
        """
        Transcribe a single SpeechSegment.

        Args:
            segment: SpeechSegment from VADSegmenter.

        Returns:
            TranscriptFragments with segment-relative tick timestamps.

        Raises:
            TranscriptionError: If the model fails on this segment.
        """
        self.load()

        audio_data = np.asarray(segment.samples, dtype=np.float32)

        try:
            segments_iter, info = self._model.transcribe(
                audio_data,
                beam_size=self.beam_size,
                language=self.language,
                task="transcribe",
                vad_filter=False,                  # We already did VAD externally
                condition_on_previous_text=False,
                initial_prompt=self.initial_prompt,
            )

            fragments = []
            for seg in segments_iter:
                fragments.append(TranscriptFragment(
                    start_tick=seconds_to_ticks(seg.start),
                    end_tick=seconds_to_ticks(seg.end),
                    text=seg.text.strip(),
                ))
        except Exception as e:
            raise TranscriptionError(
                f"ASR failed on segment {segment.start_time:.1f}s-"
                f"{segment.end_time:.1f}s: {e}"
            ) from e

        logger.debug(
            f"ASR {segment.start_time:.1f}s-{segment.end_time:.1f}s: "
            f"{len(fragments)} fragments"
        )
        return fragments
