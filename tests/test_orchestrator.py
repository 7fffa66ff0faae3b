"""
End-to-end tests for the pipeline orchestrator with fake collaborators.
"""

import numpy as np
import pytest

from speechsub.asr_worker import TranscriptFragment
from speechsub.config import AppConfig
from speechsub.errors import (
    AudioExtractionError,
    ModelLoadError,
    PipelineCancelled,
    TranscriptionError,
)
from speechsub.orchestrator import PipelineWorker, SubtitlePipeline
from speechsub.progress import PipelineState, ProgressChannel

SR = 16000


class FakeExtractor:
    """Returns 10s of audio with 'speech' from 3.0s to 6.0s."""

    def __init__(self, duration=10.0, speech=((3.0, 6.0),), error=None):
        self.duration = duration
        self.speech = speech
        self.error = error
        self.calls = 0

    def extract(self, path, progress_cb=None):
        self.calls += 1
        if self.error:
            raise self.error
        audio = np.zeros(int(self.duration * SR), dtype=np.float32)
        for start, end in self.speech:
            audio[int(start * SR):int(end * SR)] = 0.5
        if progress_cb:
            progress_cb(0.5)
            progress_cb(1.0)
        return audio


class FakeClassifier:
    def __init__(self, load_error=None):
        self.load_error = load_error
        self.loaded = False

    def load(self):
        if self.load_error:
            raise self.load_error
        self.loaded = True

    def reset(self):
        pass

    def __call__(self, chunk):
        return 1.0 if np.abs(chunk).max() > 0.1 else 0.0


class FakeTranscriber:
    """Returns one 'hello' fragment spanning three seconds per segment."""

    def __init__(self, fragments=None, failures=()):
        self.fragments = fragments or [TranscriptFragment(0, 300, "hello")]
        self.failures = set(failures)
        self.segments = []

    def load(self):
        pass

    def transcribe(self, segment):
        index = len(self.segments)
        self.segments.append(segment)
        if index in self.failures:
            raise TranscriptionError(f"segment {index} failed")
        return list(self.fragments)


@pytest.fixture
def channel():
    return ProgressChannel()


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "talk.wav"
    path.write_bytes(b"RIFF")
    return path


def make_pipeline(channel, extractor=None, classifier=None, transcriber=None, config=None):
    return SubtitlePipeline(
        config or AppConfig(),
        channel=channel,
        extractor=extractor or FakeExtractor(),
        classifier=classifier or FakeClassifier(),
        transcriber=transcriber or FakeTranscriber(),
    )


class TestEndToEnd:

    def test_single_entry(self, channel, audio_file, tmp_path):
        output = tmp_path / "talk.srt"
        track = make_pipeline(channel).process(audio_file, output)

        assert len(track.entries) == 1
        entry = track.entries[0]
        assert (entry.index, entry.start_ms, entry.end_ms, entry.text) == (
            1, 3000, 6000, "hello"
        )
        assert output.read_text(encoding="utf-8") == (
            "1\n00:00:03,000 --> 00:00:06,000\nhello\n\n"
        )

    def test_segments_reach_transcriber(self, channel, audio_file, tmp_path):
        transcriber = FakeTranscriber()
        extractor = FakeExtractor(duration=12.0, speech=((1.0, 3.0), (6.0, 9.0)))
        make_pipeline(channel, extractor=extractor, transcriber=transcriber).process(
            audio_file, tmp_path / "out.srt"
        )
        starts = [s.start_time for s in transcriber.segments]
        assert starts == pytest.approx([1.0, 6.0])

    def test_initial_prompt_from_config(self, channel, audio_file, tmp_path):
        config = AppConfig()
        config.asr.initial_prompt = "x"
        transcriber = FakeTranscriber(fragments=[TranscriptFragment(0, 100, "x, hello")])
        track = make_pipeline(channel, transcriber=transcriber, config=config).process(
            audio_file, tmp_path / "out.srt"
        )
        assert track.entries[0].text == "hello"

    def test_silent_recording_writes_empty_file(self, channel, audio_file, tmp_path):
        output = tmp_path / "out.srt"
        track = make_pipeline(channel, extractor=FakeExtractor(speech=())).process(
            audio_file, output
        )
        assert track.entries == []
        assert output.read_text() == ""


class TestStateTracking:

    def test_states_visited_in_order(self, channel, audio_file, tmp_path):
        seen = []
        channel.subscribe(lambda snap: seen.append(snap))
        make_pipeline(channel).process(audio_file, tmp_path / "out.srt")

        states = []
        for snap in seen:
            if not states or states[-1] != snap.state:
                states.append(snap.state)
        assert states == list(PipelineState)

    def test_each_stage_starts_at_zero_and_completes(self, channel, audio_file, tmp_path):
        seen = []
        channel.subscribe(seen.append)
        make_pipeline(channel).process(audio_file, tmp_path / "out.srt")

        for state in (PipelineState.RESAMPLING, PipelineState.SEGMENTING,
                      PipelineState.TRANSCRIBING, PipelineState.SAVING):
            values = [s.progress for s in seen if s.state == state]
            assert values[0] == 0.0
            assert values[-1] == 1.0

    def test_finished_snapshot(self, channel, audio_file, tmp_path):
        make_pipeline(channel).process(audio_file, tmp_path / "out.srt")
        assert channel.state == PipelineState.FINISHED

    def test_second_run_resets(self, channel, audio_file, tmp_path):
        pipeline = make_pipeline(channel)
        pipeline.process(audio_file, tmp_path / "a.srt")
        pipeline.process(audio_file, tmp_path / "b.srt")
        assert channel.state == PipelineState.FINISHED


class TestFailures:

    def test_missing_input(self, channel, tmp_path):
        extractor = FakeExtractor()
        pipeline = make_pipeline(channel, extractor=extractor)
        with pytest.raises(FileNotFoundError):
            pipeline.process(tmp_path / "missing.wav", tmp_path / "out.srt")
        assert extractor.calls == 0
        assert channel.state == PipelineState.IDLE

    def test_model_load_failure_before_any_stage(self, channel, audio_file, tmp_path):
        extractor = FakeExtractor()
        classifier = FakeClassifier(load_error=ModelLoadError("bad onnx"))
        pipeline = make_pipeline(channel, extractor=extractor, classifier=classifier)
        with pytest.raises(ModelLoadError):
            pipeline.process(audio_file, tmp_path / "out.srt")
        assert extractor.calls == 0
        assert channel.snapshot().error == "bad onnx"

    def test_decode_failure_writes_nothing(self, channel, audio_file, tmp_path):
        output = tmp_path / "out.srt"
        extractor = FakeExtractor(error=AudioExtractionError("corrupt file"))
        with pytest.raises(AudioExtractionError):
            make_pipeline(channel, extractor=extractor).process(audio_file, output)

        assert not output.exists()
        snap = channel.snapshot()
        assert snap.state == PipelineState.RESAMPLING
        assert "corrupt file" in snap.error

    def test_partial_transcription_failure(self, channel, audio_file, tmp_path):
        extractor = FakeExtractor(duration=12.0, speech=((1.0, 3.0), (6.0, 9.0)))
        transcriber = FakeTranscriber(failures=[0])
        output = tmp_path / "out.srt"
        track = make_pipeline(
            channel, extractor=extractor, transcriber=transcriber
        ).process(audio_file, output)

        assert len(track.failed_segments) == 1
        assert [e.index for e in track.entries] == [1]
        assert track.entries[0].start_ms == 6000
        assert output.exists()

    def test_total_transcription_failure(self, channel, audio_file, tmp_path):
        output = tmp_path / "out.srt"
        transcriber = FakeTranscriber(failures=[0])
        with pytest.raises(TranscriptionError):
            make_pipeline(channel, transcriber=transcriber).process(audio_file, output)
        assert not output.exists()
        assert channel.state == PipelineState.TRANSCRIBING


class TestBackgroundWorker:

    def test_worker_result(self, channel, audio_file, tmp_path):
        worker = make_pipeline(channel).start(audio_file, tmp_path / "out.srt")
        worker.join(timeout=30)

        assert not worker.is_alive()
        assert worker.error is None
        assert [e.text for e in worker.result.entries] == ["hello"]
        assert channel.snapshot().state == PipelineState.FINISHED

    def test_worker_error(self, channel, audio_file, tmp_path):
        extractor = FakeExtractor(error=AudioExtractionError("corrupt file"))
        worker = make_pipeline(channel, extractor=extractor).start(
            audio_file, tmp_path / "out.srt"
        )
        worker.join(timeout=30)
        assert isinstance(worker.error, AudioExtractionError)
        assert worker.result is None

    def test_worker_cancelled(self, channel, audio_file, tmp_path):
        worker = PipelineWorker(make_pipeline(channel), audio_file, tmp_path / "out.srt")
        worker.cancel()
        worker.start()
        worker.join(timeout=30)
        assert isinstance(worker.error, PipelineCancelled)
        assert not (tmp_path / "out.srt").exists()
