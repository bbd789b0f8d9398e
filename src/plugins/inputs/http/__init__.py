"""
HTTP Input Plugin.

This plugin provides a REST API for Ingress management.
"""

from plugins.inputs.http.api import HTTPInputPlugin

__all__ = ["HTTPInputPlugin"]
