"""
SRT Writer — Standard SubRip subtitle file generator.

Renders a SubtitleTrack as SubRip text: the entry index, a
millisecond-precision time range and the text, one blank line between
blocks. Files are always UTF-8.
"""

import logging
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


class SRTWriter:
    """
    Writes subtitle entries to a standard SRT (SubRip) file.

    SRT format:
        1
        00:00:03,000 --> 00:00:06,000
        大家好，欢迎收听。

        2
        00:00:07,100 --> 00:00:09,300
        Hello everyone.
    """

    def write(self, entries: List, output_path: Path):
        """
        Write entries to ``output_path``, creating parent directories.

        An empty list produces an empty file.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w", encoding="utf-8") as f:
            f.write(self.render(entries))

        logger.info(
            f"SRT written: {len(entries)} subtitles → {output_path}"
        )

    def render(self, entries: List) -> str:
        """Serialize entries to SRT text."""
        blocks = []
        for entry in entries:
            blocks.append(
                f"{entry.index}\n"
                f"{self._format_timestamp(entry.start_ms)} --> "
                f"{self._format_timestamp(entry.end_ms)}\n"
                f"{self._normalize_text(entry.text)}\n"
                "\n"
            )
        return "".join(blocks)

    @staticmethod
    def _normalize_text(text: str) -> str:
        """Drop blank lines, which would end the block early."""
        lines = [line.rstrip() for line in text.splitlines()]
        return "\n".join(line for line in lines if line.strip())

    @staticmethod
    def _format_timestamp(millis: int) -> str:
        """125340 -> "00:02:05,340". Negative times clamp to zero."""
        millis = max(0, int(millis))

        hours, rest = divmod(millis, 3_600_000)
        minutes, rest = divmod(rest, 60_000)
        secs, ms = divmod(rest, 1000)

        return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"

    def preview(self, entries: List, max_entries: int = 10, width: int = 80) -> str:
        """One line per entry for the log, truncated to ``width`` characters."""
        head = entries[:max_entries]
        lines = [
            f"  #{e.index:<4} {self._format_timestamp(e.start_ms)} → "
            f"{self._format_timestamp(e.end_ms)}  {self._shorten(e.text, width)}"
            for e in head
        ]
        hidden = len(entries) - len(head)
        if hidden > 0:
            lines.append(f"  ... {hidden} more entries")
        return "\n".join(lines)

    @staticmethod
    def _shorten(text: str, width: int) -> str:
        text = " / ".join(text.splitlines())
        return text if len(text) <= width else text[:width] + "..."
