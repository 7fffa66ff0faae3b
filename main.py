"""
speechsub — CLI Entry Point

Usage:
    python main.py talk.wav --vad-model models/silero_vad.onnx
    python main.py talk.wav -o talk.srt --model models/whisper-large-v3-turbo
    python main.py talk.m4a --language en --initial-prompt "Hello."
    python main.py talk.wav --background
"""

import sys
import time
import argparse
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from speechsub.config import load_config
from speechsub.errors import PipelineCancelled, SpeechSubError
from speechsub.orchestrator import SubtitlePipeline
from speechsub.progress import PipelineState, ProgressSnapshot

LOG_LEVELS = ["debug", "info", "warning", "error"]


def setup_logging(level: str = "INFO", log_file: str = None,
                  log_dir: str = None, keep_days: int = 7):
    """Configure logging for the application."""
    log_format = (
        "%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s"
    )
    date_format = "%H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(TimedRotatingFileHandler(
            Path(log_dir) / "app.log",
            when="midnight",
            backupCount=keep_days,
            encoding="utf-8",
        ))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        datefmt=date_format,
        handlers=handlers,
        force=True
    )

    # Suppress noisy third-party loggers
    logging.getLogger("faster_whisper").setLevel(
        max(logging.INFO, logging.getLogger().level)
    )
    logging.getLogger("onnxruntime").setLevel(logging.WARNING)


def print_banner():
    """Print the application banner."""
    banner = """
==========================================================
                      speechsub

  Voice Activity Detection  +  Speech Recognition
  Powered by Silero VAD & Faster-Whisper
  100% Offline  |  CPU Optimized
==========================================================
"""
    print(banner)


class ConsoleProgress:
    """Renders one progress bar per pipeline stage."""

    def __init__(self, bar_width: int = 30):
        self.bar_width = bar_width
        self._last_state = PipelineState.IDLE

    def __call__(self, snap: ProgressSnapshot):
        if snap.state in (PipelineState.IDLE, PipelineState.FINISHED):
            return
        if snap.state != self._last_state and self._last_state != PipelineState.IDLE:
            print()  # Previous stage ends on its own line
        self._last_state = snap.state

        filled = int(self.bar_width * snap.progress)
        bar = "#" * filled + "-" * (self.bar_width - filled)
        print(f"\r  [{bar}] {snap.percent:3d}%  {snap.state.label:<25}", end="", flush=True)

    def finish(self):
        if self._last_state != PipelineState.IDLE:
            print()
        self._last_state = PipelineState.IDLE


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="speechsub — Generate SRT subtitles from an audio recording "
                    "with Silero VAD and Whisper.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py talk.wav --vad-model silero_vad.onnx     # Basic usage
  python main.py talk.wav -o my_subs.srt                  # Custom output path
  python main.py talk.wav --model ./whisper-large-v3-ct2  # Local model dir
  python main.py talk.wav --language en                   # English audio
  python main.py talk.wav --initial-prompt "请输出简体中文"   # Guide the script
  python main.py talk.wav --background                    # Worker thread + polling
        """
    )

    parser.add_argument(
        "input",
        type=Path,
        help="Path to the input audio file (.wav, .mp3, .m4a, .flac, ...)"
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output SRT file path (default: same name as input with .srt extension)"
    )
    parser.add_argument(
        "-m", "--model",
        default=None,
        help="Whisper model: size name or converted model directory (default: from config)"
    )
    parser.add_argument(
        "--vad-model",
        type=Path,
        default=None,
        help="Path to the Silero VAD ONNX model (silero_vad.onnx)"
    )
    parser.add_argument(
        "-l", "--language",
        default=None,
        help="Language code of the audio (e.g., 'zh', 'en'). Default: zh"
    )
    parser.add_argument(
        "--initial-prompt",
        default=None,
        help="Initial prompt that guides transcription style (default: empty)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=LOG_LEVELS,
        help="Log verbosity (default: from config, usually 'info')"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to custom config.yaml file"
    )
    parser.add_argument(
        "--background",
        action="store_true",
        help="Run the pipeline on a worker thread and poll its progress"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except errors"
    )
    return parser


def run_inline(pipeline: SubtitlePipeline, input_path: Path, output_path: Path,
               progress: ConsoleProgress = None):
    """Run the pipeline on this thread, rendering through a listener."""
    if progress:
        pipeline.channel.subscribe(progress)
    try:
        return pipeline.process(input_path, output_path)
    finally:
        if progress:
            pipeline.channel.unsubscribe(progress)
            progress.finish()


def run_background(pipeline: SubtitlePipeline, input_path: Path, output_path: Path,
                   progress: ConsoleProgress = None, poll_interval: float = 0.1):
    """Run the pipeline on a worker thread and poll its snapshot."""
    worker = pipeline.start(input_path, output_path)
    last_version = -1
    try:
        while worker.is_alive():
            snap = pipeline.channel.snapshot()
            if progress and snap.version != last_version:
                progress(snap)
                last_version = snap.version
            time.sleep(poll_interval)
    except KeyboardInterrupt:
        worker.cancel()
        worker.join()
        raise
    finally:
        if progress:
            progress.finish()

    worker.join()
    if worker.error is not None:
        raise worker.error
    return worker.result


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # ── Validate input ──
    if not args.input.exists():
        logging.error(f"Audio file not found: {args.input}")
        print(f"Error: Audio file not found: {args.input}")
        sys.exit(1)

    # ── Determine output path ──
    output_path = args.output or args.input.with_suffix(".srt")

    # ── Load config ──
    try:
        config = load_config(args.config)
        config.update_from_args(args)
        config.validate()
    except SpeechSubError as e:
        logging.error(f"Configuration error: {e}")
        print(f"\n  [ERROR] Configuration error: {e}")
        sys.exit(1)

    # ── Setup logging ──
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else config.logging.level)
    setup_logging(
        level=log_level,
        log_file=config.logging.file,
        log_dir=config.logging.directory or None,
        keep_days=config.logging.keep_days,
    )

    # ── Banner ──
    if not args.quiet:
        print_banner()
        print(f"  Input:     {args.input}")
        print(f"  Output:    {output_path}")
        print(f"  VAD:       {config.vad.model_path or '(not set)'}")
        print(f"  Model:     Faster-Whisper {config.asr.model} ({config.asr.compute_type})")
        print(f"  Language:  {config.asr.language}")
        if config.asr.initial_prompt:
            print(f"  Prompt:    {config.asr.initial_prompt}")
        print()

    # ── Run pipeline ──
    progress = ConsoleProgress() if not args.quiet else None
    try:
        pipeline = SubtitlePipeline(config)
        if args.background:
            track = run_background(
                pipeline, args.input, output_path, progress,
                poll_interval=config.ui.poll_interval
            )
        else:
            track = run_inline(pipeline, args.input, output_path, progress)

        if not args.quiet:
            print(f"\n  [OK] Subtitles saved to: {output_path}")
            print(f"  [INFO] Total entries: {len(track.entries)}")
            if track.failed_segments:
                print(f"  [WARN] {len(track.failed_segments)} segment(s) could not be transcribed")

    except KeyboardInterrupt:
        print("\n\n  [WARN] Processing interrupted by user.")
        sys.exit(130)
    except PipelineCancelled as e:
        print(f"\n  [WARN] Cancelled: {e}")
        sys.exit(130)
    except FileNotFoundError as e:
        print(f"\n  [ERROR] File error: {e}")
        sys.exit(1)
    except SpeechSubError as e:
        print(f"\n  [ERROR] {type(e).__name__}: {e}")
        sys.exit(1)
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n  [ERROR] Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
