"""
Plugin Registry - Discovery and registration of plugins.

Translators and input plugins are registered as classes. Each class is
instantiated once up front to read its name and version and to load its
environment configuration; the instance actually used is created and
initialized on first request and then reused.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from plugins.inputs.base import InputPlugin
from plugins.translators.base import IngressTranslator

logger = logging.getLogger(__name__)

TRANSLATOR_ENTRY_POINT_GROUP = "ingress_operator.translators"

P = TypeVar("P")


class _PluginKind(Generic[P]):
    """Bookkeeping for every registered plugin of one kind."""

    def __init__(self, label: str):
        self.label = label
        self.classes: Dict[str, Type[P]] = {}
        self.info: Dict[str, Dict[str, str]] = {}
        self.configs: Dict[str, Dict[str, Any]] = {}
        self.instances: Dict[str, P] = {}

    def register(self, plugin_class: Type[P]) -> None:
        probe = plugin_class()
        name, version = probe.name, probe.version

        if name in self.classes:
            logger.warning(f"Replacing {self.label} plugin '{name}'")

        self.classes[name] = plugin_class
        self.info[name] = {"name": name, "version": version}
        self.configs[name] = plugin_class.load_config_from_env()
        logger.info(f"Registered {self.label} plugin '{name}' v{version}")

    async def get(self, name: str, config: Optional[Dict[str, Any]]) -> P:
        if name not in self.classes:
            available = ", ".join(self.classes) or "none"
            raise ValueError(
                f"Unknown {self.label} plugin: {name}. Available plugins: {available}"
            )

        instance = self.instances.get(name)
        if instance is None:
            instance = self.classes[name]()
            await instance.initialize(config or {})
            self.instances[name] = instance
            logger.info(f"Initialized {self.label} plugin '{name}'")
        return instance


class PluginRegistry:
    """Registry of translator and input plugins."""

    def __init__(self):
        self._translators: _PluginKind[IngressTranslator] = _PluginKind("translator")
        self._inputs: _PluginKind[InputPlugin] = _PluginKind("input")

    # Translators

    def register_translator_plugin(
        self, plugin_class: Type[IngressTranslator]
    ) -> None:
        self._translators.register(plugin_class)

    async def get_translator_plugin(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> IngressTranslator:
        """
        Return the initialized translator called ``name``.

        ``config`` is only used the first time the translator is requested.

        Raises:
            ValueError: If no translator of that name is registered.
        """
        return await self._translators.get(name, config)

    def list_translator_plugins(self) -> List[str]:
        return list(self._translators.classes)

    def has_translator_plugin(self, name: str) -> bool:
        return name in self._translators.classes

    def get_translator_plugin_info(self, name: str) -> Optional[Dict[str, str]]:
        return self._translators.info.get(name)

    def get_translator_plugin_config(self, name: str) -> Dict[str, Any]:
        """Environment configuration of a translator, as a copy safe to edit."""
        return dict(self._translators.configs.get(name, {}))

    # Input plugins

    def register_input_plugin(self, plugin_class: Type[InputPlugin]) -> None:
        self._inputs.register(plugin_class)

    async def get_input_plugin(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> InputPlugin:
        """Same as :meth:`get_translator_plugin` for input plugins."""
        return await self._inputs.get(name, config)

    def list_input_plugins(self) -> List[str]:
        return list(self._inputs.classes)

    def has_input_plugin(self, name: str) -> bool:
        return name in self._inputs.classes

    def get_input_plugin_info(self, name: str) -> Optional[Dict[str, str]]:
        return self._inputs.info.get(name)

    def get_input_plugin_config(self, name: str) -> Dict[str, Any]:
        return dict(self._inputs.configs.get(name, {}))


_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    global _registry
    _registry = None


def register_builtin_plugins() -> None:
    """
    Register the bundled plugins, then any third party translators
    advertised under the ``ingress_operator.translators`` entry point group.
    """
    registry = get_registry()

    from plugins.translators.routes import RouteTranslator

    registry.register_translator_plugin(RouteTranslator)

    # The HTTP plugin pulls in the web stack; the operator still runs without it
    try:
        from plugins.inputs.http import HTTPInputPlugin
    except ImportError as e:
        logger.warning(f"HTTP input plugin unavailable: {e}")
    else:
        registry.register_input_plugin(HTTPInputPlugin)

    for ep in entry_points(group=TRANSLATOR_ENTRY_POINT_GROUP):
        if registry.has_translator_plugin(ep.name):
            continue
        try:
            registry.register_translator_plugin(ep.load())
        except Exception as e:
            logger.warning(f"Could not load translator plugin {ep.name}: {e}")
