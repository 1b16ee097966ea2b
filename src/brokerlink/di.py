from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .connectors.registry import ConnectorRegistry

if TYPE_CHECKING:
    from .settings import Settings


@dataclass(slots=True)
class AppContainer:
    settings: "Settings"
    registry: ConnectorRegistry
    shutdown: asyncio.Event = field(default_factory=asyncio.Event)


def build_container(settings: "Settings", registry: ConnectorRegistry | None = None) -> AppContainer:
    """Build application container with a registry configured from settings."""
    if registry is None:
        registry = ConnectorRegistry(request_timeout=settings.request_timeout)
    return AppContainer(settings=settings, registry=registry)
