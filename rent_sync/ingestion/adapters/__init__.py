"""
Adapter Registry Module
=======================

Central registry for source-specific adapters.
Provides factory functions for creating adapters by name.
"""

from __future__ import annotations

from typing import Type

from rent_sync.core.exceptions import ConfigurationError
from rent_sync.ingestion.adapters.base import BaseAdapter, PagePayload
from rent_sync.ingestion.adapters.rent591 import Rent591Adapter


# Registry mapping adapter names to their classes
ADAPTER_REGISTRY: dict[str, Type[BaseAdapter]] = {
    "rent591": Rent591Adapter,
}


def get_adapter(adapter_type: str) -> BaseAdapter | None:
    """
    Get an adapter instance by type name.

    Args:
        adapter_type: Name of the adapter (e.g., "rent591")

    Returns:
        Adapter instance, or None if type not found
    """
    adapter_class = ADAPTER_REGISTRY.get(adapter_type)
    if adapter_class is None:
        return None
    return adapter_class()


def require_adapter(adapter_type: str) -> BaseAdapter:
    """
    Get an adapter instance by type name, failing loudly when it is unknown.

    Raises:
        ConfigurationError: No adapter is registered under ``adapter_type``
    """
    adapter = get_adapter(adapter_type)
    if adapter is None:
        known = ", ".join(sorted(ADAPTER_REGISTRY))
        raise ConfigurationError(f"Adapter '{adapter_type}' not found (known: {known})")
    return adapter


def register_adapter(name: str, adapter_class: Type[BaseAdapter]) -> None:
    """
    Register a new adapter type.

    Args:
        name: Name to register the adapter under
        adapter_class: Adapter class (must inherit from BaseAdapter)
    """
    if not issubclass(adapter_class, BaseAdapter):
        raise TypeError(f"{adapter_class} must inherit from BaseAdapter")
    ADAPTER_REGISTRY[name] = adapter_class


def list_adapters() -> list[str]:
    """List all registered adapter names."""
    return list(ADAPTER_REGISTRY.keys())


__all__ = [
    "get_adapter",
    "require_adapter",
    "register_adapter",
    "list_adapters",
    "ADAPTER_REGISTRY",
    "BaseAdapter",
    "PagePayload",
    "Rent591Adapter",
]
