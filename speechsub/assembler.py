"""
Transcript Assembler — Maps per-segment ASR output onto the recording timeline.

Each SpeechSegment is transcribed independently; fragment timestamps
are relative to the segment start. The assembler shifts them to
absolute milliseconds, clamps them to the segment, strips an echoed
initial prompt and numbers the resulting subtitles.

A segment whose inference fails is recorded on the track and skipped;
assembly continues with the next segment.
"""

import math
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .errors import PipelineCancelled, TranscriptionError

logger = logging.getLogger(__name__)

TICK_MS = 10

# Characters trimmed after a stripped prompt (includes the full-width comma)
PROMPT_SEPARATORS = ",，"


@dataclass
class SubtitleEntry:
    """A single subtitle entry ready for SRT output."""
    index: int
    start_ms: int
    end_ms: int
    text: str

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def __repr__(self):
        return (f"Sub#{self.index}({self.start_ms}–{self.end_ms}ms, "
                f"'{self.text[:50]}')")


@dataclass
class FailedSegment:
    """A segment whose transcription raised."""
    segment_index: int
    start_time: float
    end_time: float
    error: str


@dataclass
class SubtitleTrack:
    """Ordered subtitles plus the segments that could not be transcribed."""
    entries: List[SubtitleEntry] = field(default_factory=list)
    failed_segments: List[FailedSegment] = field(default_factory=list)

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


def strip_prompt(text: str, prompt: str) -> str:
    """Remove an echoed initial prompt and the separators that follow it."""
    if prompt and text.startswith(prompt):
        text = text[len(prompt):]
        while text and (text[0] in PROMPT_SEPARATORS or text[0].isspace()):
            text = text[1:]
    return text


class TranscriptAssembler:
    """
    Builds a SubtitleTrack from speech segments and an ASR callable.

    Usage:
        assembler = TranscriptAssembler(initial_prompt="")
        track = assembler.assemble(segments, asr.transcribe)
    """

    def __init__(self, initial_prompt: str = ""):
        self.initial_prompt = initial_prompt or ""

    def assemble(
        self,
        segments,
        infer: Callable,
        progress_cb: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SubtitleTrack:
        """
        Transcribe every segment and collect numbered subtitle entries.

        Args:
            segments: SpeechSegments in increasing start time.
            infer: Returns TranscriptFragments for one segment.
            progress_cb: Called with the fraction of segments processed.
            cancel_event: Checked before every segment.

        Returns:
            SubtitleTrack with contiguous indices starting at 1.

        Raises:
            TranscriptionError: If every segment failed.
        """
        track = SubtitleTrack()
        total = len(segments)

        for i, segment in enumerate(segments):
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled(f"Transcription cancelled at segment {i}/{total}")

            try:
                fragments = infer(segment)
            except Exception as e:
                logger.error(
                    f"Segment {i} ({segment.start_time:.1f}s-{segment.end_time:.1f}s) "
                    f"failed: {e}"
                )
                track.failed_segments.append(FailedSegment(
                    segment_index=i,
                    start_time=segment.start_time,
                    end_time=segment.end_time,
                    error=str(e),
                ))
            else:
                for fragment in fragments:
                    entry = self._to_entry(fragment, segment, len(track.entries) + 1)
                    if entry is not None:
                        track.entries.append(entry)

            if progress_cb:
                progress_cb((i + 1) / total)

        if total and len(track.failed_segments) == total:
            raise TranscriptionError(
                f"All {total} speech segments failed to transcribe; "
                f"first error: {track.failed_segments[0].error}"
            )

        logger.info(
            f"Assembled {len(track.entries)} subtitles from {total} segments"
            + (f" ({len(track.failed_segments)} failed)" if track.failed_segments else "")
        )
        return track

    def _to_entry(self, fragment, segment, index: int) -> Optional[SubtitleEntry]:
        text = strip_prompt(fragment.text, self.initial_prompt)
        if not text.strip():
            return None

        offset_ms = int(round(segment.start_time * 1000))
        # Truncated, never rounded up past the segment end
        segment_end_ms = math.floor(segment.end_time * 1000)

        start_ms = fragment.start_tick * TICK_MS + offset_ms
        end_ms = min(fragment.end_tick * TICK_MS + offset_ms, segment_end_ms)
        start_ms = min(start_ms, end_ms)

        logger.info(f"[{start_ms}] -> [{end_ms}]: {text}")
        return SubtitleEntry(index, start_ms, end_ms, text)
