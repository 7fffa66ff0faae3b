"""
Audio Extractor — FFmpeg-based decoding and resampling.

Decodes any audio (or video) container and converts it to 16kHz mono
PCM, returned as a float32 numpy array in [-1, 1] for VAD and Whisper.
"""

import os
import subprocess
import tempfile
import logging
import threading
from collections import deque
import numpy as np
import soundfile as sf
from pathlib import Path
from typing import Callable, Optional

from .errors import AudioExtractionError

logger = logging.getLogger(__name__)

# Last lines of FFmpeg stderr kept for the error message
STDERR_TAIL_LINES = 20


class AudioExtractor:
    """Decodes and downsamples audio files using FFmpeg."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1):
        self.sample_rate = sample_rate
        self.channels = channels

    def verify_ffmpeg(self):
        """Check that FFmpeg is available on the system PATH."""
        try:
            result = subprocess.run(
                ["ffmpeg", "-version"],
                capture_output=True, text=True, timeout=10
            )
        except FileNotFoundError:
            raise AudioExtractionError(
                "FFmpeg not found. Please install FFmpeg and add it to PATH.\n"
                "Download: https://ffmpeg.org/download.html"
            )
        if result.returncode != 0:
            raise AudioExtractionError("FFmpeg returned non-zero exit code")
        version_line = result.stdout.split("\n")[0]
        logger.debug(f"FFmpeg found: {version_line}")

    def extract(
        self,
        audio_path: Path,
        progress_cb: Optional[Callable[[float], None]] = None
    ) -> np.ndarray:
        """
        Decode an audio file to mono float32 samples at ``sample_rate``.

        Args:
            audio_path: Path to the input audio or video file.
            progress_cb: Called with the decoded fraction of the input.

        Returns:
            1-D float32 array.

        Raises:
            FileNotFoundError: If the input file doesn't exist.
            AudioExtractionError: If FFmpeg decoding fails.
        """
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        self.verify_ffmpeg()

        try:
            duration = self.get_duration(audio_path)
        except AudioExtractionError as e:
            logger.warning(f"Could not get duration, progress unavailable: {e}")
            duration = 0.0

        fd, tmp_name = tempfile.mkstemp(suffix=".wav", prefix="speechsub_")
        os.close(fd)
        output = Path(tmp_name)

        cmd = [
            "ffmpeg",
            "-i", str(audio_path),
            "-vn",                          # No video
            "-acodec", "pcm_s16le",         # 16-bit PCM
            "-ar", str(self.sample_rate),   # Sample rate
            "-ac", str(self.channels),      # Mono
            "-progress", "pipe:1",          # key=value progress on stdout
            "-nostats",
            "-loglevel", "error",
            "-y",                           # Overwrite
            str(output)
        ]

        logger.info(f"Resampling audio: {audio_path.name} → {self.sample_rate}Hz mono")
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")

        try:
            self._run_ffmpeg(cmd, duration, progress_cb)
            samples, sr = sf.read(str(output), dtype="float32")
        except (OSError, RuntimeError) as e:
            raise AudioExtractionError(f"Failed to decode {audio_path}: {e}") from e
        finally:
            self.cleanup(output)

        if sr != self.sample_rate:
            raise AudioExtractionError(
                f"Expected {self.sample_rate}Hz audio, got {sr}Hz from {audio_path}"
            )

        # Ensure 1-D
        if samples.ndim > 1:
            samples = samples.mean(axis=1).astype(np.float32)

        logger.info(
            f"Audio resampled: {len(samples) / self.sample_rate:.1f}s "
            f"({len(samples)} samples)"
        )
        return samples

    def _run_ffmpeg(self, cmd, duration: float, progress_cb):
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        # Drain stderr concurrently; ffmpeg blocks once the pipe buffer is full
        stderr_tail = deque(maxlen=STDERR_TAIL_LINES)
        drain = threading.Thread(
            target=stderr_tail.extend, args=(proc.stderr,),
            name="ffmpeg-stderr", daemon=True,
        )
        drain.start()

        try:
            for line in proc.stdout:
                key, _, value = line.strip().partition("=")
                if key == "out_time_us" and duration > 0 and progress_cb:
                    try:
                        done = int(value) / 1_000_000
                    except ValueError:
                        continue
                    progress_cb(min(1.0, done / duration))
            proc.wait()
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        finally:
            drain.join()

        if proc.returncode != 0:
            stderr = "".join(stderr_tail).rstrip()
            raise AudioExtractionError(
                f"FFmpeg audio extraction failed (exit code {proc.returncode}):\n{stderr}"
            )

    def get_duration(self, audio_path: Path) -> float:
        """
        Get the duration of a media file in seconds using ffprobe.

        Args:
            audio_path: Path to the media file.

        Returns:
            Duration in seconds.
        """
        cmd = [
            "ffprobe",
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(audio_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise AudioExtractionError(f"ffprobe failed: {e}") from e

        if result.returncode != 0:
            raise AudioExtractionError(f"ffprobe failed: {result.stderr}")

        try:
            return float(result.stdout.strip())
        except ValueError as e:
            raise AudioExtractionError(
                f"ffprobe returned no duration for {audio_path}"
            ) from e

    @staticmethod
    def cleanup(audio_path: Path):
        """Remove the temporary audio file."""
        audio_path = Path(audio_path)
        if audio_path.exists():
            audio_path.unlink()
            logger.debug(f"Cleaned up temp audio: {audio_path}")
