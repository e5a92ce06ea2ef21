"""Language model query services."""


def register_providers():
    """Register all query services."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings
    from .lmstudio import LMStudioQueryService
    from .gemini import GeminiQueryService

    registry.register_query_service(
        "lmstudio",
        LMStudioQueryService,
        lambda: settings.get_provider_config("lmstudio"),
    )
    registry.register_query_service(
        "gemini",
        GeminiQueryService,
        lambda: settings.get_provider_config("gemini"),
    )
