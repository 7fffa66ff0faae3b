"""
speechsub — Offline audio to SRT subtitle generator.

Processing pipeline:
  - audio_extractor: FFmpeg decoding and resampling to 16kHz mono
  - vad: Silero VAD classifier and speech segmenter
  - asr_worker: Speech-to-text via Faster-Whisper
  - assembler: Segment-relative transcripts → absolute subtitle track
  - srt_writer: Standard SRT file output
  - progress: Pipeline state and per-stage progress for UIs
  - orchestrator: Stage sequencing
"""

__version__ = "0.3.0"
