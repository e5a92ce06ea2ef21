"""Tests for settings, the provider registry and logging setup."""

import json
import logging
import os
import pytest
from unittest.mock import patch
from audio_chat.config.settings import Settings
from audio_chat.providers.registry import ProviderRegistry
from audio_chat.providers import registry
from audio_chat.providers.query.lmstudio import LMStudioQueryService
from audio_chat.utils.logging import JsonFormatter, setup_logging


def make_settings(config_file=None, env=None):
    with patch.dict(os.environ, env or {}, clear=True), \
         patch.object(Settings, "_load_env_file"):
        return Settings(config_file)


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = make_settings()

        assert settings.conversation.query_provider == "lmstudio"
        assert settings.conversation.context_depth == 1
        assert settings.conversation.halt_on_turn_error is False
        assert settings.logging.level == "WARNING"
        assert settings.validate() == []

    def test_environment_overrides(self):
        settings = make_settings(
            env={
                "CHAT_MODEL": "llama-3.2-3b",
                "CHAT_TEMPERATURE": "0.9",
                "CHAT_CONTEXT_DEPTH": "3",
                "CHAT_HALT_ON_TURN_ERROR": "true",
                "AUDIO_USE_DESKTOP": "1",
                "LMSTUDIO_BASE_URL": "http://gpu-box:1234/v1",
                "LOG_LEVEL": "debug",
            }
        )

        assert settings.conversation.model == "llama-3.2-3b"
        assert settings.conversation.temperature == 0.9
        assert settings.conversation.context_depth == 3
        assert settings.conversation.halt_on_turn_error is True
        assert settings.audio.use_desktop_audio is True
        assert settings.providers.lmstudio_base_url == "http://gpu-box:1234/v1"
        assert settings.logging.level == "DEBUG"

    def test_false_boolean_from_environment(self):
        settings = make_settings(env={"CHAT_REPLIES_ONLY": "no", "METRICS_ENABLED": "0"})

        assert settings.conversation.replies_only is False
        assert settings.metrics.enabled is False

    def test_load_from_file(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(
            json.dumps(
                {
                    "conversation": {"query_provider": "gemini", "unknown_key": 1},
                    "audio": {"language": "fr"},
                    "not_a_section": {"x": 1},
                }
            )
        )

        settings = make_settings(config_file)

        assert settings.conversation.query_provider == "gemini"
        assert settings.audio.language == "fr"
        assert not hasattr(settings.conversation, "unknown_key")

    def test_environment_beats_file(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"conversation": {"query_provider": "gemini"}}))

        settings = make_settings(config_file, env={"QUERY_PROVIDER": "lmstudio"})

        assert settings.conversation.query_provider == "lmstudio"

    def test_invalid_json_is_ignored(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("{not json")

        settings = make_settings(config_file)

        assert settings.conversation.query_provider == "lmstudio"

    def test_validate_reports_issues(self):
        settings = make_settings()
        settings.conversation.temperature = 3.5
        settings.conversation.context_depth = -1
        settings.conversation.quit_keys = ""
        settings.logging.level = "LOUD"

        issues = settings.validate()

        assert len(issues) == 4
        assert any("temperature" in issue for issue in issues)

    def test_provider_config(self):
        settings = make_settings()

        config = settings.get_provider_config("lmstudio")

        assert config["base_url"] == "http://localhost:1234/v1"
        assert config["max_retries"] == 3
        with pytest.raises(ValueError):
            settings.get_provider_config("nope")

    def test_retry_and_timeout_settings_reach_providers(self):
        settings = make_settings(
            env={"BACKOFF_MULTIPLIER": "3", "MAX_BACKOFF": "12.5", "TTS_GENERATION_TIMEOUT": "20"}
        )

        for provider in ("lmstudio", "gemini"):
            config = settings.get_provider_config(provider)
            assert config["backoff_multiplier"] == 3.0
            assert config["max_backoff"] == 12.5
        assert settings.get_provider_config("elevenlabs")["timeout"] == 20.0

    def test_to_dict(self):
        data = make_settings().to_dict()

        assert set(data) == set(Settings.SECTIONS)
        assert data["conversation"]["temperature"] == 0.2


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_default_providers_registered(self):
        assert registry.list_transcription_sources() == ["whisperkit"]
        assert registry.list_query_services() == ["lmstudio", "gemini"]
        assert registry.list_speech_renderers() == ["elevenlabs"]

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown query provider: nope"):
            registry.get_query_service("nope")

    def test_explicit_kwargs_override_config(self):
        local = ProviderRegistry()
        local.register_query_service(
            "lmstudio",
            LMStudioQueryService,
            lambda: {"base_url": "http://a:1/v1", "model_name": "from-config"},
        )

        service = local.get_query_service("lmstudio", model_name="explicit")

        assert service.base_url == "http://a:1/v1"
        assert service.model_name == "explicit"

    def test_clear(self):
        local = ProviderRegistry()
        local.register_query_service("lmstudio", LMStudioQueryService)
        local.clear()

        assert local.list_query_services() == []


class TestLogging:
    """Tests for logging setup."""

    def teardown_method(self):
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()

    def test_console_only_by_default(self):
        log_path = setup_logging()

        assert log_path is None
        assert logging.getLogger().level == logging.WARNING

    def test_debug_overrides_level(self):
        setup_logging(debug=True, log_level="ERROR")

        assert logging.getLogger().level == logging.DEBUG

    def test_file_logging(self, tmp_path):
        log_path = setup_logging(log_file=True, log_dir=tmp_path, session_id="abc123")

        assert log_path.parent == tmp_path
        assert log_path.name.startswith("session_abc123_")

    def test_json_formatter_with_structlog_event(self):
        record = logging.LogRecord("audio_chat", logging.INFO, "x.py", 10, {}, None, None)
        record.msg = {"event": "Turn failed", "component": "query", "level": "error"}

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Turn failed"
        assert data["level"] == "INFO"
        assert data["extra"] == {"component": "query"}

    def test_json_formatter_plain_message(self):
        record = logging.LogRecord("audio_chat", logging.WARNING, "x.py", 10, "hello %s", ("world",), None)

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "hello world"
        assert "extra" not in data
