"""
Provider registry — format name → provider lookup for one pipeline.

Resolution is a case-insensitive match of requested format strings
against each provider's ``format``. Results come back in registration
order so that merged output is deterministic.
"""

from __future__ import annotations

import logging
from typing import Iterable

from packforge.adapters.base import FormatProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of format providers for one platform pipeline."""

    def __init__(self, providers: Iterable[FormatProvider] = ()):
        self._providers: dict[str, FormatProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: FormatProvider) -> None:
        key = provider.format.casefold()
        if key in self._providers:
            logger.warning("Overwriting existing provider for format: %s", provider.format)
        self._providers[key] = provider
        logger.debug("Registered format provider: %s", provider.format)

    def unregister(self, format_name: str) -> None:
        self._providers.pop(format_name.casefold(), None)

    def get(self, format_name: str) -> FormatProvider | None:
        return self._providers.get(format_name.casefold())

    def formats(self) -> list[str]:
        return [p.format for p in self._providers.values()]

    def resolve(self, requested: Iterable[str]) -> list[FormatProvider]:
        """Providers matching any requested format, in registration order."""
        wanted = {f.strip().casefold() for f in requested if f and f.strip()}
        return [p for key, p in self._providers.items() if key in wanted]

    def __len__(self) -> int:
        return len(self._providers)
