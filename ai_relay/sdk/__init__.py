"""
SDK for AI Relay.

Backend implementations and the local workspace evidence source.
"""

from .openai_backend import OpenAIBackend, build_backends
from .workspace import LocalWorkspace

__all__ = ["OpenAIBackend", "build_backends", "LocalWorkspace"]
