"""Provider registry for dynamic provider loading."""

from typing import Dict, Type, Callable, Any, Optional
import structlog

from .transcription.base import TranscriptionSource
from .query.base import QueryService
from .speech.base import SpeechRenderer


logger = structlog.get_logger()

ConfigGetter = Callable[[], Dict[str, Any]]


class ProviderRegistry:
    """Registry for managing provider implementations."""

    KINDS = ("transcription", "query", "speech")

    def __init__(self):
        self._providers: Dict[str, Dict[str, type]] = {kind: {} for kind in self.KINDS}
        self._provider_configs: Dict[str, ConfigGetter] = {}

    def _register(
        self,
        kind: str,
        name: str,
        provider_class: type,
        config_getter: Optional[ConfigGetter],
    ) -> None:
        self._providers[kind][name] = provider_class
        if config_getter:
            self._provider_configs[f"{kind}:{name}"] = config_getter
        logger.debug(
            "Registered provider",
            kind=kind,
            name=name,
            class_name=provider_class.__name__,
        )

    def _create(self, kind: str, name: str, **kwargs) -> Any:
        if name not in self._providers[kind]:
            raise ValueError(f"Unknown {kind} provider: {name}")

        provider_class = self._providers[kind][name]
        config_key = f"{kind}:{name}"

        # Explicit keyword arguments win over configured defaults
        if config_key in self._provider_configs:
            config = self._provider_configs[config_key]()
            config.update(kwargs)
            kwargs = config

        return provider_class(**kwargs)

    def register_transcription_source(
        self,
        name: str,
        provider_class: Type[TranscriptionSource],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register a transcription source."""
        self._register("transcription", name, provider_class, config_getter)

    def register_query_service(
        self,
        name: str,
        provider_class: Type[QueryService],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register a query service."""
        self._register("query", name, provider_class, config_getter)

    def register_speech_renderer(
        self,
        name: str,
        provider_class: Type[SpeechRenderer],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register a speech renderer."""
        self._register("speech", name, provider_class, config_getter)

    def get_transcription_source(self, name: str, **kwargs) -> TranscriptionSource:
        """Get a transcription source instance."""
        return self._create("transcription", name, **kwargs)

    def get_query_service(self, name: str, **kwargs) -> QueryService:
        """Get a query service instance."""
        return self._create("query", name, **kwargs)

    def get_speech_renderer(self, name: str, **kwargs) -> SpeechRenderer:
        """Get a speech renderer instance."""
        return self._create("speech", name, **kwargs)

    def list_transcription_sources(self) -> list[str]:
        """List available transcription sources."""
        return list(self._providers["transcription"].keys())

    def list_query_services(self) -> list[str]:
        """List available query services."""
        return list(self._providers["query"].keys())

    def list_speech_renderers(self) -> list[str]:
        """List available speech renderers."""
        return list(self._providers["speech"].keys())

    def clear(self) -> None:
        """Clear all registered providers."""
        for providers in self._providers.values():
            providers.clear()
        self._provider_configs.clear()


# Global registry instance
registry = ProviderRegistry()
