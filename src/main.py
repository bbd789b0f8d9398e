"""
Main entry point for the Ingress Operator.

Wires the object store, event bus, translator, controller and input plugins
together and runs them until SIGINT or SIGTERM.
"""

import asyncio
import logging
import signal
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from config import get_config
from controller import Controller, ControllerConfig, IngressReconciler
from db import DatabaseManager
from events import EventBus
from objects import NamespacedName
from plugins.inputs.base import InputPlugin
from plugins.registry import PluginRegistry, get_registry, register_builtin_plugins
from plugins.translators.base import IngressTranslator

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT
    )


class Application:
    """Owns every long-lived component of the operator process."""

    def __init__(self):
        self.config = get_config()
        self.event_bus: Optional[EventBus] = None
        self.db: Optional[DatabaseManager] = None
        self.translator: Optional[IngressTranslator] = None
        self.controller: Optional[Controller] = None
        self.input_plugins: List[InputPlugin] = []
        self.running = False
        self.stopped = False

    def _plugin_config(self, env_config: Dict[str, Any], name: str) -> Dict[str, Any]:
        # PLUGIN_CONFIGS entries win over what the plugin read from its env
        merged = dict(env_config)
        merged.update(self.config.plugins.get_plugin_config(name))
        return merged

    async def _open_store(self) -> None:
        # The bus exists before the store so that no write goes unpublished
        self.event_bus = EventBus()
        self.db = DatabaseManager(**asdict(self.config.database))
        self.db.set_event_bus(self.event_bus)
        await self.db.connect()
        await self.db.initialize_schema()

    async def _load_translator(self, registry: PluginRegistry) -> None:
        name = self.config.plugins.translator_plugin
        settings = self._plugin_config(registry.get_translator_plugin_config(name), name)
        self.translator = await registry.get_translator_plugin(name, settings)
        self.translator.set_store(self.db)
        logger.info(f"Using translator '{name}' v{self.translator.version}")

    async def _load_input_plugins(self, registry: PluginRegistry) -> None:
        names = self.config.plugins.enabled_input_plugins or registry.list_input_plugins()
        for name in names:
            if not registry.has_input_plugin(name):
                logger.warning(f"Input plugin '{name}' not registered, skipping")
                continue

            settings = self._plugin_config(registry.get_input_plugin_config(name), name)
            plugin = await registry.get_input_plugin(name, settings)
            plugin.set_db_manager(self.db)
            plugin.set_event_bus(self.event_bus)
            self.input_plugins.append(plugin)

    async def initialize(self):
        logger.info("Initializing Ingress Operator")
        register_builtin_plugins()
        registry = get_registry()

        await self._open_store()
        await self._load_translator(registry)

        self.controller = Controller(
            reconciler=IngressReconciler(self.db, self.translator),
            store=self.db,
            event_bus=self.event_bus,
            config=ControllerConfig(**asdict(self.config.controller)),
        )

        await self._load_input_plugins(registry)
        logger.info(
            f"Ingress Operator ready with {len(self.input_plugins)} input plugin(s)"
        )

    async def on_resource_event(self, event_type: str, key: NamespacedName) -> None:
        """Input plugins call this to have an Ingress reconciled right away."""
        logger.debug(f"{event_type} requested for {key}")
        self.controller.enqueue(key)

    async def start(self):
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting Ingress Operator")

        runners = [self.controller.start()]
        runners += [plugin.start(self.on_resource_event) for plugin in self.input_plugins]
        try:
            await asyncio.gather(*(asyncio.create_task(r) for r in runners))
        except asyncio.CancelledError:
            logger.info("Ingress Operator tasks cancelled")

    async def stop(self):
        # A signal and main's finally block both end up here
        if self.stopped:
            return
        self.stopped = True

        logger.info("Stopping Ingress Operator")
        self.running = False

        # Stop accepting writes before the controller goes away
        for plugin in self.input_plugins:
            await plugin.stop()
        if self.controller:
            await self.controller.stop()
        if self.db:
            await self.db.close()

        logger.info("Ingress Operator stopped")


async def main():
    setup_logging(get_config().api.log_level)
    app = Application()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(
            sig, lambda s=sig: asyncio.create_task(shutdown(app, s))
        )

    try:
        await app.start()
    finally:
        await app.stop()


async def shutdown(app: Application, sig: signal.Signals) -> None:
    logger.info(f"Received {sig.name}, shutting down")
    await app.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
