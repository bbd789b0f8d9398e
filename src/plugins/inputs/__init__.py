"""
Input plugins package.

Input plugins provide ways for users to submit Ingresses (HTTP API, GitOps,
etc.).
"""

from plugins.inputs.base import InputPlugin, ResourceCallback

__all__ = ["InputPlugin", "ResourceCallback"]
