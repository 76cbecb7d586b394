"""Registry of available transcription providers."""

import logging
import threading
from typing import Dict, List, Optional

from ..models.session import ProviderMode
from .base import TranscriptionProvider, AbstractTranscriptionBackend, StreamingTranscriptionBackend

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Providers keyed by id, in registration order."""

    def __init__(self):
        self.lock = threading.Lock()
        self._providers: Dict[str, TranscriptionProvider] = {}

    def register(self, provider: TranscriptionProvider) -> None:
        """Add a provider, replacing any existing one with the same id."""
        with self.lock:
            replaced = provider.provider_id in self._providers
            self._providers[provider.provider_id] = provider
        logger.info(f"{'Replaced' if replaced else 'Registered'} provider '{provider.provider_id}' "
                    f"({provider.provider_display_name})")

    def provider(self, provider_id: Optional[str]) -> Optional[TranscriptionProvider]:
        if not provider_id:
            return None
        with self.lock:
            return self._providers.get(provider_id)

    def batch_provider(self, provider_id: Optional[str]) -> Optional[AbstractTranscriptionBackend]:
        provider = self.provider(provider_id)
        return provider if isinstance(provider, AbstractTranscriptionBackend) else None

    def streaming_provider(self, provider_id: Optional[str]) -> Optional[StreamingTranscriptionBackend]:
        provider = self.provider(provider_id)
        return provider if isinstance(provider, StreamingTranscriptionBackend) else None

    @property
    def all_providers(self) -> List[TranscriptionProvider]:
        with self.lock:
            return list(self._providers.values())

    @property
    def configured_providers(self) -> List[TranscriptionProvider]:
        return [p for p in self.all_providers if p.is_configured]

    def is_provider_configured(self, provider_id: Optional[str]) -> bool:
        provider = self.provider(provider_id)
        return provider is not None and provider.is_configured

    def resolve(self, provider_id: Optional[str]) -> Optional[TranscriptionProvider]:
        """The requested provider if it is configured, else None."""
        provider = self.provider(provider_id)
        if provider is None:
            logger.warning(f"No provider registered under '{provider_id}'")
            return None
        if not provider.is_configured:
            logger.warning(f"Provider '{provider_id}' is registered but not configured")
            return None
        return provider

    def mode_of(self, provider_id: Optional[str]) -> Optional[ProviderMode]:
        provider = self.provider(provider_id)
        return provider.mode if provider else None
