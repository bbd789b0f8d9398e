"""
Translator Plugin Base - Abstract interface for ingress translators.

A translator realizes an Ingress: it creates, updates and deletes the
dependent objects the Ingress needs and records what it observed in the
Ingress' in-memory status. The controller decides whether that status is
persisted.

Third party translators are discovered via Python entry points in the
'ingress_operator.translators' group.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from objects import Ingress


class TranslationError(Exception):
    """Raised when a translator could not fully realize an Ingress."""

    def __init__(self, message: str, reason: str = "ReconcileFailed"):
        self.message = message
        self.reason = reason
        super().__init__(message)


class IngressTranslator(ABC):
    """
    Abstract base class for translator plugins.

    Implementations must mutate only ``ingress.status`` on the object they
    are given. Every dependent object they write must carry a controlling
    owner reference to the Ingress.
    """

    _store: Optional[Any] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this translator (e.g., 'routes')."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Plugin version string."""
        pass

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the translator with configuration.

        Args:
            config: Plugin-specific configuration dictionary
        """
        pass

    @abstractmethod
    async def reconcile(self, ingress: Ingress) -> None:
        """
        Bring the dependents of an Ingress in line with its spec.

        Updates ``ingress.status`` in place, including on failure, so the
        caller can persist a failure condition.

        Args:
            ingress: A private copy of the Ingress; safe to mutate.

        Raises:
            TranslationError: If the dependents could not be reconciled.
        """
        pass

    def set_store(self, store: Any) -> None:
        """
        Set the object store used to read and write dependents.

        Args:
            store: The DatabaseManager instance
        """
        self._store = store

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load plugin-specific configuration from environment variables.

        Returns:
            Dictionary of configuration values for this plugin.
        """
        return {}
