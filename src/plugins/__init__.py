"""
Plugin system for the Ingress Operator.

This package provides the plugin architecture for extensible inputs and
translators.
"""

from plugins.inputs.base import InputPlugin
from plugins.registry import PluginRegistry, get_registry
from plugins.translators.base import IngressTranslator, TranslationError

__all__ = [
    "InputPlugin",
    "IngressTranslator",
    "TranslationError",
    "PluginRegistry",
    "get_registry",
]
