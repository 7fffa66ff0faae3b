"""Exceptions raised by the speechsub pipeline."""


class SpeechSubError(Exception):
    """Base class for all speechsub errors."""
    pass


class ConfigurationError(SpeechSubError):
    """Invalid value in the configuration file or CLI overrides."""
    pass


class ModelLoadError(SpeechSubError):
    """A VAD or speech-to-text model could not be loaded."""
    pass


class AudioExtractionError(SpeechSubError):
    """Decoding or resampling the input audio failed."""
    pass


class StreamBoundaryError(SpeechSubError):
    """
    The VAD classifier rejected a window as invalid input.

    Expected on the last, partial window of a recording. Not fatal:
    the segmenter uses it to close whatever segment is still open.
    """
    pass


class TranscriptionError(SpeechSubError):
    """The speech-to-text model failed on a segment."""
    pass


class PipelineCancelled(SpeechSubError):
    """Processing was cancelled between windows or segments."""
    pass
