"""
Input Plugin Base - How Ingresses get into the store.

An input plugin accepts Ingress specs from somewhere (the bundled HTTP API,
or for example a directory of manifests) and writes them to the object
store. It never writes status. Because the store publishes every write,
the controller notices new specs without the plugin's help; the callback
passed to :meth:`InputPlugin.start` only exists to ask for an immediate
reconcile.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

from objects import NamespacedName

# (reason, key) -> None; asks the controller to reconcile ``key`` now
ResourceCallback = Callable[[str, NamespacedName], Awaitable[None]]


class InputPlugin(ABC):
    """Base class for sources of Ingress specs."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name, e.g. 'http'."""

    @property
    @abstractmethod
    def version(self) -> str:
        pass

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """Apply the merged environment and PLUGIN_CONFIGS settings."""

    @abstractmethod
    async def start(self, on_resource_event: ResourceCallback) -> None:
        """
        Serve until :meth:`stop` is called.

        Args:
            on_resource_event: Awaited with a reason such as ``"reconcile"``
                and the Ingress key to have that Ingress reconciled ahead
                of its normal turn.
        """

    @abstractmethod
    async def stop(self) -> None:
        pass

    @abstractmethod
    async def health_check(self) -> tuple[bool, str]:
        """Return ``(healthy, human readable detail)``."""

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Read this plugin's settings from the environment."""
        return {}

    def set_db_manager(self, db_manager: Any) -> None:
        """Hand over the object store. Plugins that write specs keep it."""

    def set_event_bus(self, event_bus: Any) -> None:
        """Hand over the event bus. Plugins that stream events keep it."""
