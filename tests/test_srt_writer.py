"""
Tests for the SRT Writer module.
"""

import pytest
from speechsub.srt_writer import SRTWriter
from speechsub.assembler import SubtitleEntry


@pytest.fixture
def writer():
    return SRTWriter()


@pytest.fixture
def lecture():
    return [
        SubtitleEntry(1, 3000, 6000, "大家好，欢迎收听。"),
        SubtitleEntry(2, 7100, 9300, "Hello everyone."),
        SubtitleEntry(3, 61_250, 64_000, "今天我们讨论语音识别。"),
    ]


@pytest.mark.parametrize("millis, expected", [
    (0, "00:00:00,000"),
    (1234, "00:00:01,234"),
    (59_999, "00:00:59,999"),
    (65_500, "00:01:05,500"),
    (3_661_123, "01:01:01,123"),
    (36_000_000, "10:00:00,000"),
    (-40, "00:00:00,000"),
])
def test_timestamp(writer, millis, expected):
    assert writer._format_timestamp(millis) == expected


class TestRender:

    def test_single_block(self, writer):
        text = writer.render([SubtitleEntry(1, 3000, 6000, "hello")])
        assert text == "1\n00:00:03,000 --> 00:00:06,000\nhello\n\n"

    def test_keeps_entry_indices(self, writer, lecture):
        blocks = writer.render(lecture).strip().split("\n\n")
        assert [b.splitlines()[0] for b in blocks] == ["1", "2", "3"]
        assert blocks[2].splitlines()[1] == "00:01:01,250 --> 00:01:04,000"

    def test_blank_lines_removed_from_text(self, writer):
        text = writer.render([SubtitleEntry(1, 0, 1000, "line one\n\n  \nline two  ")])
        assert text.endswith("line one\nline two\n\n")

    def test_nothing_to_render(self, writer):
        assert writer.render([]) == ""


class TestWrite:

    def test_round_trip_utf8(self, writer, lecture, tmp_path):
        output = tmp_path / "lecture.srt"
        writer.write(lecture, output)
        assert output.read_text(encoding="utf-8") == writer.render(lecture)
        assert "大家好，欢迎收听。" in output.read_bytes().decode("utf-8")

    def test_missing_directories_created(self, writer, lecture, tmp_path):
        output = tmp_path / "out" / "2024" / "lecture.srt"
        writer.write(lecture, output)
        assert output.is_file()

    def test_empty_track_still_writes_file(self, writer, tmp_path):
        output = tmp_path / "silence.srt"
        writer.write([], output)
        assert output.read_text(encoding="utf-8") == ""

    def test_overwrites_existing_file(self, writer, lecture, tmp_path):
        output = tmp_path / "lecture.srt"
        output.write_text("stale", encoding="utf-8")
        writer.write(lecture[:1], output)
        assert "stale" not in output.read_text(encoding="utf-8")


class TestPreview:

    def test_hidden_entries_counted(self, writer, lecture):
        lines = writer.preview(lecture, max_entries=2).splitlines()
        assert len(lines) == 3
        assert lines[-1].strip() == "... 1 more entries"

    def test_long_text_shortened(self, writer):
        line = writer.preview([SubtitleEntry(1, 0, 1000, "A" * 100)], width=20)
        assert line.endswith("A" * 20 + "...")

    def test_multiline_text_on_one_line(self, writer):
        line = writer.preview([SubtitleEntry(7, 0, 1000, "one\ntwo")])
        assert "#7" in line
        assert "one / two" in line

    def test_empty(self, writer):
        assert writer.preview([]) == ""
