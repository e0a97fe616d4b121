# Path: core/concepts/store.py
# Purpose: Provide read-only access to the concept vocabulary and recorded opposites.
# Layer: core/concepts.
# Details: Loaded once from JSON; matches query tokens to concepts by label or identifier.

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import numpy as np

from core.models.domain import Concept

TOKEN_SPLIT_RE = re.compile(r"[\s,]+")


def query_tokens(text: str) -> List[str]:
    """Lower-cased tokens of a query, split on whitespace and commas."""

    return [token for token in TOKEN_SPLIT_RE.split(text.strip().lower()) if token]


class ConceptStore:
    """In-memory, read-only concept store."""

    def __init__(self, concepts: Iterable[Concept] = ()) -> None:
        self._concepts: Dict[str, Concept] = {}
        self._by_label: Dict[str, Concept] = {}
        for concept in concepts:
            self._concepts[concept.id.lower()] = concept
            self._by_label.setdefault(concept.label.lower(), concept)

    @classmethod
    def from_file(cls, path: Path | str) -> "ConceptStore":
        """Load concepts from a JSON list of {id, label, embedding?, opposites?} objects."""

        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        concepts: List[Concept] = []
        for raw in payload:
            embedding = raw.get("embedding")
            concepts.append(
                Concept(
                    id=str(raw["id"]),
                    label=str(raw.get("label", raw["id"])),
                    embedding=np.asarray(embedding, dtype=np.float32) if embedding else None,
                    opposites=tuple(str(opp) for opp in raw.get("opposites") or ()),
                )
            )
        return cls(concepts)

    def __len__(self) -> int:
        return len(self._concepts)

    def get(self, concept_id: str) -> Optional[Concept]:
        """Return a concept by identifier (case-insensitive)."""

        return self._concepts.get(concept_id.lower())

    def _lookup(self, token: str) -> Optional[Concept]:
        return self._concepts.get(token) or self._by_label.get(token)

    def match_query(self, text: str) -> List[Concept]:
        """Return concepts matching the whole query or any token of at least two characters."""

        matched: Dict[str, Concept] = {}
        whole = text.strip().lower()
        concept = self._lookup(whole) if whole else None
        if concept is not None:
            matched[concept.id] = concept
        for token in query_tokens(text):
            if len(token) < 2:
                continue
            concept = self._lookup(token)
            if concept is not None:
                matched.setdefault(concept.id, concept)
        return list(matched.values())

    def opposites_of(self, concept: Concept) -> List[Concept]:
        """Return the recorded opposite concepts that exist in the store."""

        opposites = [self.get(opp_id) for opp_id in concept.opposites]
        return [opp for opp in opposites if opp is not None]
