# Path: core/vector_store/__init__.py
# Purpose: Package initializer for vector index interfaces and implementations.
# Layer: core/vector_store.
# Details: Exposes the base vector index contract and the numpy-backed reference class.

from .base import Neighbor, VectorIndex
from .memory_store import InMemoryVectorIndex

__all__ = ["Neighbor", "VectorIndex", "InMemoryVectorIndex"]
