"""Per-app adapter registries."""

import logging
import threading
from collections.abc import Callable, Mapping

from tunelink import AdapterRegistry, APIConfig, DeveloperApp, Platform
from tunelink.platforms import AdapterFactory

logger = logging.getLogger(__name__)


class AdapterProvider:
    """Builds and caches one AdapterRegistry per developer app.

    Adapters hold HTTP clients and token caches, so they are reused across
    conversions of the same app.
    """

    def __init__(
        self,
        config: APIConfig | None = None,
        factories: Mapping[Platform, AdapterFactory] | None = None,
        build: Callable[[DeveloperApp], AdapterRegistry] | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            config: API configuration passed to every adapter.
            factories: Adapter factories. Defaults to every platform.
            build: Replaces registry construction entirely (tests pass fakes).
        """
        self._config = config or APIConfig()
        self._factories = factories
        self._build = build
        self._registries: dict[str, AdapterRegistry] = {}
        self._lock = threading.Lock()

    def __call__(self, app: DeveloperApp) -> AdapterRegistry:
        with self._lock:
            if (registry := self._registries.get(app.id)) is not None:
                return registry
            if self._build is not None:
                registry = self._build(app)
            else:
                registry = AdapterRegistry.for_app(app, self._config, self._factories)
            logger.info(
                "Adapters for app %s: %s",
                app.id,
                ", ".join(registry.platforms) or "none",
            )
            self._registries[app.id] = registry
            return registry

    def close(self) -> None:
        with self._lock:
            for registry in self._registries.values():
                registry.close()
            self._registries.clear()
