"""
Translator plugins package.

Translators turn an Ingress into the dependent objects that realize it.
They are discovered via Python entry points (group:
'ingress_operator.translators').
"""

from plugins.translators.base import IngressTranslator, TranslationError

__all__ = ["IngressTranslator", "TranslationError"]
