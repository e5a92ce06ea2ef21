"""Transcription sources."""


def register_providers():
    """Register all transcription sources."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings
    from .whisperkit import WhisperKitTranscriber

    registry.register_transcription_source(
        "whisperkit",
        WhisperKitTranscriber,
        lambda: settings.get_provider_config("whisperkit"),
    )
