# Path: core/concepts/__init__.py
# Purpose: Package initializer for the concept vocabulary.
# Layer: core/concepts.
# Details: Exposes the read-only ConceptStore and the query tokenizer it matches with.

from .store import ConceptStore, query_tokens

__all__ = ["ConceptStore", "query_tokens"]
