"""
Configuration loader for speechsub.
Loads from config.yaml and allows CLI argument overrides.
"""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


@dataclass
class AudioConfig:
    sample_rate: int = 16000
    channels: int = 1


@dataclass
class VADConfig:
    model_path: str = ""
    threshold: float = 0.35
    chunk_sec: float = 0.1
    hangover_samples: int = 3200    # 200 ms of trailing silence at 16 kHz
    tail_silence_sec: float = 1.0
    max_segment_sec: float = 60.0
    split_sec: float = 2.0
    min_segment_sec: float = 1.01
    pad_extra_samples: int = 100


@dataclass
class ASRConfig:
    model: str = "large-v3-turbo"
    device: str = "cpu"
    compute_type: str = "int8"
    threads: int = 8
    beam_size: int = 1
    language: str = "zh"
    initial_prompt: str = ""


@dataclass
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file: Optional[str] = None
    keep_days: int = 7


@dataclass
class UIConfig:
    poll_interval: float = 0.1


@dataclass
class AppConfig:
    """Top-level application configuration."""
    audio: AudioConfig = field(default_factory=AudioConfig)
    vad: VADConfig = field(default_factory=VADConfig)
    asr: ASRConfig = field(default_factory=ASRConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ui: UIConfig = field(default_factory=UIConfig)

    def update_from_args(self, args):
        """Override config values from CLI arguments."""
        if getattr(args, "model", None):
            self.asr.model = str(args.model)
        if getattr(args, "vad_model", None):
            self.vad.model_path = str(args.vad_model)
        if getattr(args, "language", None):
            self.asr.language = args.language
        # An explicit empty prompt is a valid override
        if getattr(args, "initial_prompt", None) is not None:
            self.asr.initial_prompt = args.initial_prompt
        if getattr(args, "log_level", None):
            self.logging.level = args.log_level

    def validate(self):
        """Reject values the pipeline cannot run with."""
        if self.audio.sample_rate <= 0:
            raise ConfigurationError(
                f"audio.sample_rate must be positive, got {self.audio.sample_rate}"
            )
        if self.audio.channels != 1:
            raise ConfigurationError(
                f"Only mono audio is supported, got audio.channels={self.audio.channels}"
            )
        if not 0.0 <= self.vad.threshold <= 1.0:
            raise ConfigurationError(
                f"vad.threshold must be within [0, 1], got {self.vad.threshold}"
            )
        if int(self.vad.chunk_sec * self.audio.sample_rate) <= 0:
            raise ConfigurationError(
                f"vad.chunk_sec too small for {self.audio.sample_rate}Hz: {self.vad.chunk_sec}"
            )
        if self.vad.split_sec <= 0 or self.vad.max_segment_sec <= self.vad.split_sec:
            raise ConfigurationError(
                "vad.split_sec must be positive and smaller than vad.max_segment_sec"
            )
        if self.vad.hangover_samples < 0 or self.vad.pad_extra_samples < 0:
            raise ConfigurationError("vad sample counts must not be negative")
        return self


def _dict_to_dataclass(cls, data: dict):
    """Build one config section from a YAML mapping, ignoring unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a mapping for section '{cls.__name__}', got {type(data).__name__}"
        )
    field_names = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in field_names}
    return cls(**filtered)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Falls back to defaults if file is missing.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found at {path}, using defaults.")
        return AppConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")

    sections = {
        name: _dict_to_dataclass(section.default_factory, raw.get(name))
        for name, section in AppConfig.__dataclass_fields__.items()
    }
    config = AppConfig(**sections)

    logger.info(f"Configuration loaded from {path}")
    return config.validate()
