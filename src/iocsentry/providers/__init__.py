"""Evidence provider implementations."""
from __future__ import annotations

from importlib import import_module
from typing import Dict, Iterable, Optional

from ..core.interfaces import OSInterface
from ..types import ProviderKind
from .base import EvidenceProvider, ProviderRegistry

_PROVIDER_MODULES: tuple[str, ...] = (
    "processes",
    "files",
    "preferences",
    "logs",
)


def load_providers() -> Iterable[type[EvidenceProvider]]:
    """Import all provider modules to populate the registry."""

    for module_name in _PROVIDER_MODULES:
        import_module(f"{__name__}.{module_name}")
    return ProviderRegistry.get_all()


def build_providers(
    os_interface: OSInterface, query_timeout: Optional[float] = None
) -> Dict[ProviderKind, EvidenceProvider]:
    """Instantiate one provider per kind bound to ``os_interface``."""
    return {
        provider_cls.kind: provider_cls(os_interface, query_timeout)
        for provider_cls in load_providers()
    }


__all__ = ["EvidenceProvider", "ProviderRegistry", "build_providers", "load_providers"]
