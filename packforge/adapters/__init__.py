"""
Adapters — format providers, secondary stages, and process runners.

    from packforge.adapters import FormatProvider, ProviderRegistry
"""

from packforge.adapters.base import FormatProvider, FormatResult, PackageFormatContext
from packforge.adapters.mock import MockFormatProvider
from packforge.adapters.registry import ProviderRegistry

__all__ = [
    "FormatProvider",
    "FormatResult",
    "MockFormatProvider",
    "PackageFormatContext",
    "ProviderRegistry",
]
