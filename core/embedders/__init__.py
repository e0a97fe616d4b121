# Path: core/embedders/__init__.py
# Purpose: Package initializer for embedder implementations and interfaces.
# Layer: core/embedders.
# Details: Exposes the base interface, the local reference implementation and the HTTP service client.

from .base import Embedder
from .clip_embedder import ClipEmbedder
from .http_embedder import HttpEmbedder

__all__ = ["Embedder", "ClipEmbedder", "HttpEmbedder"]
