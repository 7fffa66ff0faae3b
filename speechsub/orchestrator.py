"""
Pipeline Orchestrator — Coordinates the entire subtitle generation pipeline.

Stages:
  1. Resampling (FFmpeg → 16kHz mono)
  2. Speech segmentation (Silero VAD)
  3. Transcription (Faster-Whisper) + timeline assembly
  4. SRT output

Every stage publishes its state and progress on a ProgressChannel.
A failing stage aborts the run; nothing is written before the save stage.
"""

import time
import logging
import threading
from pathlib import Path
from typing import Optional

from .audio_extractor import AudioExtractor
from .vad import VADSegmenter, SileroVADClassifier
from .asr_worker import ASRWorker
from .assembler import TranscriptAssembler, SubtitleTrack
from .srt_writer import SRTWriter
from .progress import PipelineState, ProgressChannel, get_progress_channel

logger = logging.getLogger(__name__)


class SubtitlePipeline:
    """
    Main pipeline orchestrator for offline subtitle generation.

    Usage:
        config = load_config()
        pipeline = SubtitlePipeline(config)
        pipeline.process("talk.wav", "talk.srt")

    Collaborators may be injected; by default the FFmpeg extractor,
    Silero VAD and Faster-Whisper adapters are built from ``config``.
    """

    def __init__(
        self,
        config,
        channel: Optional[ProgressChannel] = None,
        extractor=None,
        classifier=None,
        transcriber=None,
        writer=None,
    ):
        self.config = config
        self.channel = channel or get_progress_channel()

        sample_rate = config.audio.sample_rate
        self.extractor = extractor or AudioExtractor(
            sample_rate=sample_rate,
            channels=config.audio.channels
        )
        self.classifier = classifier or SileroVADClassifier(
            config.vad.model_path, sample_rate=sample_rate
        )
        self.transcriber = transcriber or ASRWorker(config.asr)
        self.writer = writer or SRTWriter()

        self.segmenter = VADSegmenter(config.vad, sample_rate=sample_rate)
        self.assembler = TranscriptAssembler(config.asr.initial_prompt)

    def process(
        self,
        input_path: Path,
        output_path: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> SubtitleTrack:
        """
        Run the full subtitle generation pipeline.

        Args:
            input_path: Path to the input audio file.
            output_path: Path for the output .srt file.
            cancel_event: Set to stop between VAD windows or segments.

        Returns:
            The SubtitleTrack that was written.
        """
        input_path = Path(input_path)
        output_path = Path(output_path)
        start_time = time.monotonic()

        logger.info(f"{'='*60}")
        logger.info(f"Input:    {input_path}")
        logger.info(f"Output:   {output_path}")
        logger.info(f"Language: {self.config.asr.language}")
        logger.info(f"{'='*60}")

        self.channel.reset()
        try:
            self._prepare(input_path)
        except Exception as e:
            logger.error(f"Setup failed for {input_path}: {e}")
            self.channel.fail(e)
            raise

        # ── Stage 1: Resampling ──
        samples = self._run_stage(
            PipelineState.RESAMPLING, input_path,
            lambda cb: self.extractor.extract(input_path, progress_cb=cb),
        )

        # ── Stage 2: Speech segmentation ──
        segments = self._run_stage(
            PipelineState.SEGMENTING, input_path,
            lambda cb: self.segmenter.segment(
                samples, self.classifier, progress_cb=cb, cancel_event=cancel_event
            ),
        )

        # ── Stage 3: Transcription ──
        track = self._run_stage(
            PipelineState.TRANSCRIBING, input_path,
            lambda cb: self.assembler.assemble(
                segments, self.transcriber.transcribe,
                progress_cb=cb, cancel_event=cancel_event
            ),
        )

        # ── Stage 4: Save ──
        self._run_stage(
            PipelineState.SAVING, output_path,
            lambda cb: self.writer.write(track.entries, output_path),
        )

        self.channel.enter(PipelineState.FINISHED)

        elapsed = time.monotonic() - start_time
        logger.info(f"{'='*60}")
        logger.info(f"Pipeline complete in {elapsed:.1f}s")
        logger.info(f"  Speech segments: {len(segments)}")
        logger.info(f"  Subtitles: {len(track.entries)} entries")
        if track.failed_segments:
            failed = ", ".join(
                f"#{f.segment_index} ({f.start_time:.1f}s-{f.end_time:.1f}s)"
                for f in track.failed_segments
            )
            logger.warning(f"  Failed segments: {failed}")
        logger.info(f"  Output: {output_path}")
        logger.info(f"{'='*60}")

        preview = self.writer.preview(track.entries, max_entries=5)
        if preview:
            logger.info(f"Preview:\n{preview}")

        return track

    def start(self, input_path: Path, output_path: Path) -> "PipelineWorker":
        """Run ``process`` on a detached worker thread."""
        worker = PipelineWorker(self, input_path, output_path)
        worker.start()
        return worker

    def _prepare(self, input_path: Path):
        """Fail before any stage starts if the input or a model is unusable."""
        if not input_path.is_file():
            raise FileNotFoundError(f"Input audio not found: {input_path}")
        self.classifier.load()
        self.transcriber.load()

    def _run_stage(self, state: PipelineState, path: Path, work):
        self.channel.enter(state)
        stage_start = time.monotonic()
        try:
            result = work(self.channel.update)
        except Exception as e:
            logger.error(f"Stage {state.name.lower()} failed ({path}): {e}")
            self.channel.fail(e)
            raise
        self.channel.complete()
        logger.info(
            f"Stage {state.name.lower()} done in {time.monotonic() - stage_start:.1f}s"
        )
        return result


class PipelineWorker(threading.Thread):
    """
    Worker thread for one pipeline run.

    The caller polls ``pipeline.channel.snapshot()`` for progress, then
    joins and reads ``result`` or ``error``.
    """

    def __init__(self, pipeline: SubtitlePipeline, input_path: Path, output_path: Path):
        super().__init__(name="subtitle-pipeline", daemon=True)
        self.pipeline = pipeline
        self.input_path = input_path
        self.output_path = output_path
        self.cancel_event = threading.Event()
        self.result: Optional[SubtitleTrack] = None
        self.error: Optional[BaseException] = None

    def run(self):
        try:
            self.result = self.pipeline.process(
                self.input_path, self.output_path, cancel_event=self.cancel_event
            )
        except Exception as e:
            # Already logged by the pipeline; handed to the joining thread
            self.error = e

    def cancel(self):
        self.cancel_event.set()
