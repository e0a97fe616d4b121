# Path: core/expansion/__init__.py
# Purpose: Package initializer for LLM-driven query extensions.
# Layer: core/expansion.
# Details: Exposes the LLM provider, defensive parser, two-tier cache and the generator.

from .cache import ExpansionCache, InMemoryExtensionTier, SqliteExtensionStore
from .generator import ExpansionGenerator, source_for
from .llm import ChatCompletionsProvider, LLMProvider
from .parsing import ParsedExtensions, ParseFailure, parse_extensions

__all__ = [
    "ChatCompletionsProvider",
    "ExpansionCache",
    "ExpansionGenerator",
    "InMemoryExtensionTier",
    "LLMProvider",
    "ParsedExtensions",
    "ParseFailure",
    "SqliteExtensionStore",
    "parse_extensions",
    "source_for",
]
