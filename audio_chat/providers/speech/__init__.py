"""Speech renderers."""


def register_providers():
    """Register all speech renderers."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings
    from .elevenlabs import ElevenLabsRenderer

    registry.register_speech_renderer(
        "elevenlabs",
        ElevenLabsRenderer,
        lambda: settings.get_provider_config("elevenlabs"),
    )
