"""Configuration settings for the audio chat assistant."""

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, asdict
import json
import structlog
from dotenv import load_dotenv
import threading


logger = structlog.get_logger()


@dataclass
class SystemPrompts:
    """System instructions sent with every query."""
    default: str = (
        "You are a helpful voice assistant. Your answers are read aloud, "
        "so keep them short, conversational and free of markdown."
    )


@dataclass
class AudioSettings:
    """Audio capture and transcription settings."""
    sample_rate: int = 16000
    channels: int = 1
    language: str = "en"
    use_desktop_audio: bool = False
    silence_threshold: float = 0.01  # RMS of float32 samples
    max_silence_seconds: float = 2.0
    max_duration_seconds: float = 30.0


@dataclass
class ProviderSettings:
    """Provider-specific settings."""
    # WhisperKit
    whisperkit_model: str = "large-v3_turbo"
    whisperkit_compute_units: str = "cpuAndNeuralEngine"
    whisperkit_path: str = "whisperkit-cli"

    # LM Studio (OpenAI compatible server)
    lmstudio_base_url: str = "http://localhost:1234/v1"
    lmstudio_api_key: str = "lm-studio"
    lmstudio_model: Optional[str] = None

    # Gemini
    gemini_model: str = "gemini-1.5-flash"
    gemini_max_tokens: int = 2048

    # ElevenLabs
    elevenlabs_voice_id: str = "pNInz6obpgDQGcFmaJgB"  # Adam voice
    elevenlabs_model_id: str = "eleven_flash_v2_5"
    elevenlabs_output_format: str = "mp3_22050_32"
    elevenlabs_stability: float = 0.5
    elevenlabs_similarity_boost: float = 0.8
    elevenlabs_style: float = 0.0
    elevenlabs_speed: float = 1.0
    elevenlabs_use_speaker_boost: bool = True


@dataclass
class ConversationSettings:
    """Turn-taking behaviour of the conversation loop."""
    transcription_provider: str = "whisperkit"
    query_provider: str = "lmstudio"
    speech_provider: str = "elevenlabs"
    model: Optional[str] = None
    temperature: float = 0.2
    context_depth: int = 1
    halt_on_turn_error: bool = False
    poll_interval_ms: int = 50
    quit_keys: str = "qQ\x1b"
    replies_only: bool = False
    no_speech: bool = False


@dataclass
class TimeoutSettings:
    """Timeout settings for external calls."""
    query_timeout: int = 120  # seconds
    tts_generation_timeout: int = 10  # seconds
    transcription_timeout: int = 60  # seconds


@dataclass
class RetrySettings:
    """Retry configuration for query services."""
    max_retries: int = 3
    initial_backoff: float = 1.0  # seconds
    backoff_multiplier: float = 2.0
    max_backoff: float = 30.0  # seconds


@dataclass
class MetricsSettings:
    """Metrics collection settings."""
    enabled: bool = True


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = "WARNING"
    format: str = "dev"
    file_enabled: bool = False
    file_rotation_mb: int = 10
    file_backup_count: int = 7


def _env_bool(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Main settings class for the audio chat assistant."""

    SECTIONS = (
        "system_prompts",
        "audio",
        "providers",
        "conversation",
        "timeouts",
        "retries",
        "metrics",
        "logging",
    )

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.RLock()
        self._env_loaded = False

        self.system_prompts = SystemPrompts()
        self.audio = AudioSettings()
        self.providers = ProviderSettings()
        self.conversation = ConversationSettings()
        self.timeouts = TimeoutSettings()
        self.retries = RetrySettings()
        self.metrics = MetricsSettings()
        self.logging = LoggingSettings()

        # Load .env file first
        self._load_env_file()

        if self.config_file and self.config_file.exists():
            self.load_from_file()

        # Environment wins over the config file
        self.load_from_env()

    def _load_env_file(self) -> None:
        """Load environment variables from the nearest .env file."""
        if not self._env_loaded:
            current_dir = Path.cwd()
            for parent in [current_dir] + list(current_dir.parents):
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    logger.debug("Loaded .env file", path=str(env_file))
                    break
            self._env_loaded = True

    def load_from_file(self) -> None:
        """Load settings from a JSON configuration file.

        Unknown sections and keys are ignored so that a config file written
        for a newer version does not break an older one.
        """
        if not self.config_file or not self.config_file.exists():
            return

        try:
            with self._lock:
                with open(self.config_file, "r") as f:
                    config = json.load(f)

                for section_name in self.SECTIONS:
                    section_config = config.get(section_name)
                    if not isinstance(section_config, dict):
                        continue
                    section = getattr(self, section_name)
                    for key, value in section_config.items():
                        if hasattr(section, key):
                            setattr(section, key, value)

                logger.info("Loaded settings from file", file=str(self.config_file))

        except (OSError, json.JSONDecodeError) as e:
            logger.error(
                "Failed to load settings from file",
                file=str(self.config_file),
                error=str(e),
            )

    def load_from_env(self) -> None:
        """Load settings from environment variables."""
        with self._lock:
            if os.getenv("SYSTEM_PROMPT_DEFAULT"):
                self.system_prompts.default = os.getenv("SYSTEM_PROMPT_DEFAULT")

            # Audio settings
            if os.getenv("AUDIO_SAMPLE_RATE"):
                self.audio.sample_rate = int(os.getenv("AUDIO_SAMPLE_RATE"))
            if os.getenv("AUDIO_LANGUAGE"):
                self.audio.language = os.getenv("AUDIO_LANGUAGE")
            if _env_bool("AUDIO_USE_DESKTOP") is not None:
                self.audio.use_desktop_audio = _env_bool("AUDIO_USE_DESKTOP")
            if os.getenv("AUDIO_SILENCE_THRESHOLD"):
                self.audio.silence_threshold = float(os.getenv("AUDIO_SILENCE_THRESHOLD"))
            if os.getenv("AUDIO_MAX_SILENCE_SECONDS"):
                self.audio.max_silence_seconds = float(
                    os.getenv("AUDIO_MAX_SILENCE_SECONDS")
                )
            if os.getenv("AUDIO_MAX_DURATION_SECONDS"):
                self.audio.max_duration_seconds = float(
                    os.getenv("AUDIO_MAX_DURATION_SECONDS")
                )

            # Provider-specific overrides
            if os.getenv("WHISPERKIT_MODEL"):
                self.providers.whisperkit_model = os.getenv("WHISPERKIT_MODEL")
            if os.getenv("WHISPERKIT_COMPUTE_UNITS"):
                self.providers.whisperkit_compute_units = os.getenv("WHISPERKIT_COMPUTE_UNITS")
            if os.getenv("WHISPERKIT_PATH"):
                self.providers.whisperkit_path = os.getenv("WHISPERKIT_PATH")

            if os.getenv("LMSTUDIO_BASE_URL"):
                self.providers.lmstudio_base_url = os.getenv("LMSTUDIO_BASE_URL")
            if os.getenv("LMSTUDIO_API_KEY"):
                self.providers.lmstudio_api_key = os.getenv("LMSTUDIO_API_KEY")
            if os.getenv("LMSTUDIO_MODEL"):
                self.providers.lmstudio_model = os.getenv("LMSTUDIO_MODEL")

            if os.getenv("GEMINI_MODEL"):
                self.providers.gemini_model = os.getenv("GEMINI_MODEL")
            if os.getenv("GEMINI_MAX_TOKENS"):
                self.providers.gemini_max_tokens = int(os.getenv("GEMINI_MAX_TOKENS"))

            if os.getenv("ELEVENLABS_VOICE_ID"):
                self.providers.elevenlabs_voice_id = os.getenv("ELEVENLABS_VOICE_ID")
            if os.getenv("ELEVENLABS_MODEL_ID"):
                self.providers.elevenlabs_model_id = os.getenv("ELEVENLABS_MODEL_ID")
            if os.getenv("ELEVENLABS_OUTPUT_FORMAT"):
                self.providers.elevenlabs_output_format = os.getenv("ELEVENLABS_OUTPUT_FORMAT")

            # Conversation loop
            if os.getenv("QUERY_PROVIDER"):
                self.conversation.query_provider = os.getenv("QUERY_PROVIDER")
            if os.getenv("SPEECH_PROVIDER"):
                self.conversation.speech_provider = os.getenv("SPEECH_PROVIDER")
            if os.getenv("TRANSCRIPTION_PROVIDER"):
                self.conversation.transcription_provider = os.getenv("TRANSCRIPTION_PROVIDER")
            if os.getenv("CHAT_MODEL"):
                self.conversation.model = os.getenv("CHAT_MODEL")
            if os.getenv("CHAT_TEMPERATURE"):
                self.conversation.temperature = float(os.getenv("CHAT_TEMPERATURE"))
            if os.getenv("CHAT_CONTEXT_DEPTH"):
                self.conversation.context_depth = int(os.getenv("CHAT_CONTEXT_DEPTH"))
            if _env_bool("CHAT_HALT_ON_TURN_ERROR") is not None:
                self.conversation.halt_on_turn_error = _env_bool("CHAT_HALT_ON_TURN_ERROR")
            if _env_bool("CHAT_REPLIES_ONLY") is not None:
                self.conversation.replies_only = _env_bool("CHAT_REPLIES_ONLY")
            if _env_bool("CHAT_NO_SPEECH") is not None:
                self.conversation.no_speech = _env_bool("CHAT_NO_SPEECH")

            # Timeouts and retries
            if os.getenv("QUERY_TIMEOUT"):
                self.timeouts.query_timeout = int(os.getenv("QUERY_TIMEOUT"))
            if os.getenv("TTS_GENERATION_TIMEOUT"):
                self.timeouts.tts_generation_timeout = int(os.getenv("TTS_GENERATION_TIMEOUT"))
            if os.getenv("MAX_RETRIES"):
                self.retries.max_retries = int(os.getenv("MAX_RETRIES"))
            if os.getenv("INITIAL_BACKOFF"):
                self.retries.initial_backoff = float(os.getenv("INITIAL_BACKOFF"))
            if os.getenv("BACKOFF_MULTIPLIER"):
                self.retries.backoff_multiplier = float(os.getenv("BACKOFF_MULTIPLIER"))
            if os.getenv("MAX_BACKOFF"):
                self.retries.max_backoff = float(os.getenv("MAX_BACKOFF"))

            if _env_bool("METRICS_ENABLED") is not None:
                self.metrics.enabled = _env_bool("METRICS_ENABLED")

            # Logging settings
            if os.getenv("LOG_LEVEL"):
                self.logging.level = os.getenv("LOG_LEVEL").upper()
            if os.getenv("LOG_FORMAT"):
                self.logging.format = os.getenv("LOG_FORMAT")
            if _env_bool("LOG_FILE_ENABLED") is not None:
                self.logging.file_enabled = _env_bool("LOG_FILE_ENABLED")

    def get_provider_config(self, provider_type: str) -> Dict[str, Any]:
        """Get constructor configuration for a specific provider."""
        if provider_type == "whisperkit":
            return {
                "model": self.providers.whisperkit_model,
                "compute_units": self.providers.whisperkit_compute_units,
                "whisperkit_path": self.providers.whisperkit_path,
                "sample_rate": self.audio.sample_rate,
                "channels": self.audio.channels,
                "timeout": self.timeouts.transcription_timeout,
            }
        elif provider_type == "lmstudio":
            return {
                "base_url": self.providers.lmstudio_base_url,
                "api_key": self.providers.lmstudio_api_key,
                "model_name": self.providers.lmstudio_model,
                "timeout": float(self.timeouts.query_timeout),
                "max_retries": self.retries.max_retries,
                "initial_backoff": self.retries.initial_backoff,
                "backoff_multiplier": self.retries.backoff_multiplier,
                "max_backoff": self.retries.max_backoff,
            }
        elif provider_type == "gemini":
            return {
                "model_name": self.providers.gemini_model,
                "max_output_tokens": self.providers.gemini_max_tokens,
                "timeout": float(self.timeouts.query_timeout),
                "max_retries": self.retries.max_retries,
                "initial_backoff": self.retries.initial_backoff,
                "backoff_multiplier": self.retries.backoff_multiplier,
                "max_backoff": self.retries.max_backoff,
            }
        elif provider_type == "elevenlabs":
            return {
                "voice_id": self.providers.elevenlabs_voice_id,
                "model_id": self.providers.elevenlabs_model_id,
                "output_format": self.providers.elevenlabs_output_format,
                "stability": self.providers.elevenlabs_stability,
                "similarity_boost": self.providers.elevenlabs_similarity_boost,
                "style": self.providers.elevenlabs_style,
                "speed": self.providers.elevenlabs_speed,
                "use_speaker_boost": self.providers.elevenlabs_use_speaker_boost,
                "timeout": float(self.timeouts.tts_generation_timeout),
            }
        else:
            raise ValueError(f"Unknown provider type: {provider_type}")

    def reload(self) -> None:
        """Reload settings from file and environment."""
        with self._lock:
            if self.config_file and self.config_file.exists():
                self.load_from_file()
            self.load_from_env()
            logger.info("Settings reloaded")

    def validate(self) -> list[str]:
        """Validate current settings and return list of issues."""
        issues = []

        if self.audio.sample_rate not in [8000, 16000, 44100, 48000]:
            issues.append(f"Invalid sample rate: {self.audio.sample_rate}")
        if self.audio.channels not in [1, 2]:
            issues.append(f"Invalid channels: {self.audio.channels}")
        if self.audio.silence_threshold < 0:
            issues.append(f"Invalid silence threshold: {self.audio.silence_threshold}")
        if self.audio.max_silence_seconds <= 0:
            issues.append(f"Invalid max silence: {self.audio.max_silence_seconds}")
        if self.audio.max_duration_seconds <= 0:
            issues.append(f"Invalid max duration: {self.audio.max_duration_seconds}")

        if not 0.0 <= self.conversation.temperature <= 2.0:
            issues.append(f"Invalid temperature: {self.conversation.temperature}")
        if self.conversation.context_depth < 0:
            issues.append(f"Invalid context depth: {self.conversation.context_depth}")
        if self.conversation.poll_interval_ms <= 0:
            issues.append(f"Invalid poll interval: {self.conversation.poll_interval_ms}")
        if not self.conversation.quit_keys:
            issues.append("At least one quit key is required")

        if self.timeouts.query_timeout <= 0:
            issues.append(f"Invalid query timeout: {self.timeouts.query_timeout}")
        if self.retries.max_retries < 1:
            issues.append(f"Invalid max retries: {self.retries.max_retries}")
        if self.retries.initial_backoff < 0:
            issues.append(f"Invalid initial backoff: {self.retries.initial_backoff}")

        if self.logging.level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            issues.append(f"Invalid log level: {self.logging.level}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        with self._lock:
            return {name: asdict(getattr(self, name)) for name in self.SECTIONS}


# Global settings instance
settings = Settings()
