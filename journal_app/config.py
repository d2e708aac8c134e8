"""Configuration loader and validation."""

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "AudioConfig",
    "GeminiConfig",
    "VisualizerConfig",
    "StorageConfig",
    "ReminderConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
    "discover_audio_devices",
]

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "eloquent-journal"
SECTIONS = ("audio", "gemini", "visualizer", "storage", "reminder", "general")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class AudioConfig:
    """Audio capture configuration."""

    sample_rate: int = 16000
    channels: int = 1
    chunk_size: int = 1024
    device: int | str | None = None
    max_duration: float = 300.0


@dataclass
class GeminiConfig:
    """Remote analysis service configuration."""

    api_key: str | None = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    analysis_model: str = "gemini-2.5-flash"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    voice: str = "Kore"
    timeout: float = 120.0


@dataclass
class VisualizerConfig:
    """Live spectrum display settings."""

    enabled: bool = True
    fft_size: int = 256
    refresh_hz: float = 30.0
    width: int = 48


@dataclass
class StorageConfig:
    """Local persistence settings."""

    data_dir: str = str(DEFAULT_DATA_DIR)

    @property
    def path(self) -> Path:
        return Path(self.data_dir).expanduser()


@dataclass
class ReminderConfig:
    poll_interval: float = 10.0


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False
    debug: bool = False


@dataclass
class Config:
    """Main configuration container."""

    audio: AudioConfig = field(default_factory=AudioConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    visualizer: VisualizerConfig = field(default_factory=VisualizerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    reminder: ReminderConfig = field(default_factory=ReminderConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. JOURNAL_CONFIG env var
                  2. ./journal.toml
                  3. ~/.config/eloquent-journal/journal.toml
                  Defaults are used when no file is found.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit file is missing or values are invalid
        """
        if env is None:
            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                audio=AudioConfig(**coerced["audio"]),
                gemini=GeminiConfig(**coerced["gemini"]),
                visualizer=VisualizerConfig(**coerced["visualizer"]),
                storage=StorageConfig(**coerced["storage"]),
                reminder=ReminderConfig(**coerced["reminder"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate value ranges.

        Raises:
            ConfigError: If any setting is out of range
        """
        validate_audio_config(self.audio)
        validate_gemini_config(self.gemini)
        validate_visualizer_config(self.visualizer)

        if self.reminder.poll_interval <= 0:
            raise ConfigError(
                f"reminder.poll_interval must be positive, got {self.reminder.poll_interval}"
            )

    def require_api_key(self) -> str:
        """Return the service credential or fail with a helpful message."""
        if not self.gemini.api_key:
            raise ConfigError(
                "Gemini API key is required. "
                "Set it in the config file or via the GEMINI_API_KEY environment variable."
            )
        return self.gemini.api_key


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    candidates = []
    if env_path := env.get("JOURNAL_CONFIG"):
        candidates.append(Path(env_path))

    candidates.append(Path("journal.toml"))
    candidates.append(Path.home() / ".config" / "eloquent-journal" / "journal.toml")

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.info(
        "No config file found (searched: %s), using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Args:
        raw_data: Raw parsed TOML dictionary
        env: Environment variables for overrides

    Returns:
        Dictionary with one table per section
    """
    coerced = {}

    for section in SECTIONS:
        table = raw_data.get(section, {})
        if not isinstance(table, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(table)

    unknown = set(raw_data) - set(SECTIONS)
    if unknown:
        logger.warning("Ignoring unknown config sections: %s", ", ".join(sorted(unknown)))

    gemini_section = coerced["gemini"]
    if not gemini_section.get("api_key"):
        gemini_section["api_key"] = env.get("GEMINI_API_KEY") or env.get("API_KEY")

    if data_dir := env.get("JOURNAL_DATA_DIR"):
        coerced["storage"]["data_dir"] = data_dir

    return coerced


def discover_audio_devices() -> list[dict]:
    """Enumerate available audio capture devices.

    Returns:
        List of device dicts with keys: index, name, channels, sample_rate
        Returns empty list if sounddevice unavailable or no devices found
    """
    try:
        import sounddevice
    except (ImportError, OSError) as e:
        logger.warning("sounddevice not available, cannot enumerate audio devices: %s", e)
        return []

    devices = []
    try:
        device_list = sounddevice.query_devices()
        if isinstance(device_list, dict):
            device_list = [device_list]

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) > 0:
                devices.append(
                    {
                        "index": idx,
                        "name": dev_info.get("name", f"Device {idx}"),
                        "channels": dev_info.get("max_input_channels", 0),
                        "sample_rate": dev_info.get("default_samplerate", 0),
                    }
                )
    except Exception as e:
        logger.warning("Error discovering audio devices: %s", e)

    return devices


def validate_audio_config(audio_cfg: AudioConfig) -> None:
    """Validate audio capture settings.

    Raises:
        ConfigError: If a setting is invalid
    """
    if audio_cfg.sample_rate <= 0:
        raise ConfigError(f"sample_rate must be positive, got {audio_cfg.sample_rate}")
    if audio_cfg.channels not in (1, 2):
        raise ConfigError(f"channels must be 1 or 2, got {audio_cfg.channels}")
    if audio_cfg.chunk_size <= 0:
        raise ConfigError(f"chunk_size must be positive, got {audio_cfg.chunk_size}")
    if audio_cfg.max_duration <= 0:
        raise ConfigError(f"max_duration must be positive, got {audio_cfg.max_duration}")


def validate_gemini_config(gemini_cfg: GeminiConfig) -> None:
    """Validate remote service settings.

    Raises:
        ConfigError: If a setting is invalid
    """
    if gemini_cfg.timeout <= 0:
        raise ConfigError(f"Gemini timeout must be positive, got {gemini_cfg.timeout}")
    if not gemini_cfg.base_url.startswith(("http://", "https://")):
        raise ConfigError(f"Invalid Gemini base_url '{gemini_cfg.base_url}'")
    for name in ("analysis_model", "tts_model", "voice"):
        if not getattr(gemini_cfg, name):
            raise ConfigError(f"gemini.{name} must not be empty")


def validate_visualizer_config(visualizer_cfg: VisualizerConfig) -> None:
    """Validate spectrum display settings.

    Raises:
        ConfigError: If a setting is invalid
    """
    size = visualizer_cfg.fft_size
    if size < 32 or size > 32768 or size & (size - 1):
        raise ConfigError(f"fft_size must be a power of two between 32 and 32768, got {size}")
    if visualizer_cfg.refresh_hz <= 0:
        raise ConfigError(f"refresh_hz must be positive, got {visualizer_cfg.refresh_hz}")
    if visualizer_cfg.width <= 0:
        raise ConfigError(f"width must be positive, got {visualizer_cfg.width}")


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().
    """
    return Config.from_toml(path, env=env)
