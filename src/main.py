"""
Application wiring for pzctl.

Builds the provider session, plugin registry, state store, event bus
and controller from configuration.
"""

import logging
from typing import Optional

from config import Config, get_config
from controller import Controller
from events import EventBus
from plugins.registry import PluginRegistry, get_registry, register_builtin_plugins
from provider import ProviderSession
from state import StateStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging once, in the standard pzctl format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


class Application:
    """Holds the components of one pzctl run."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.provider: Optional[ProviderSession] = None
        self.registry: Optional[PluginRegistry] = None
        self.state: Optional[StateStore] = None
        self.event_bus: Optional[EventBus] = None
        self.controller: Optional[Controller] = None

    def initialize(self) -> None:
        """Create components and load state. Does not touch the API."""
        if self.controller is not None:
            return

        registry = get_registry()
        if not registry.list_resource_plugins():
            register_builtin_plugins()
        self.registry = registry

        provider_config = self.config.provider
        self.provider = ProviderSession(
            api_url=provider_config.api_url,
            timeout=provider_config.http_timeout,
        )
        self.registry.configure(self.provider)

        self.state = StateStore(self.config.state.path)
        self.state.load()

        self.event_bus = EventBus()
        self.controller = Controller(
            state=self.state,
            registry=self.registry,
            event_bus=self.event_bus,
        )
        logger.debug("All components initialized")

    async def connect(self) -> None:
        """Authenticate the provider session against the API."""
        self.initialize()
        if not self.provider.configured:
            await self.provider.configure(self.config.provider.api_token)
