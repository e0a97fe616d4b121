# Path: api/app.py
# Purpose: Expose a FastAPI application for design-image search and interaction logging.
# Layer: api.
# Details: Health, search and interaction endpoints delegating to the core pipeline and metrics store.

from __future__ import annotations

import base64
import binascii
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from config.log_setup import configure_logging
from config.settings import AppSettings
from core.bootstrap import build_pipeline
from core.errors import SearchUnavailableError
from core.models.domain import ScoredCandidate, SearchQuery, SourceMode
from core.search.pipeline import SearchPipeline


class SearchRequest(BaseModel):
    """Body of POST /search."""

    text: str = ""
    category: Optional[str] = None
    source_mode: Optional[SourceMode] = None
    main_concept: Optional[str] = None
    additions: List[str] = Field(default_factory=list)
    sliders: Dict[str, float] = Field(default_factory=dict)
    debug: bool = False
    limit: Optional[int] = Field(default=None, ge=1, le=500)
    image_base64: Optional[str] = Field(default=None, description="Base64-encoded query image; searches by image instead of text.")

    @field_validator("sliders")
    @classmethod
    def _sliders_in_range(cls, value: Dict[str, float]) -> Dict[str, float]:
        for name, position in value.items():
            if not 0.0 <= position <= 1.0:
                raise ValueError(f"Slider {name!r} must be within [0, 1], got {position}")
        return value

    @field_validator("image_base64")
    @classmethod
    def _image_is_base64(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"image_base64 is not valid base64: {exc}") from exc
        return value

    def to_query(self) -> SearchQuery:
        return SearchQuery(
            text=self.text,
            category=self.category or None,
            source_mode=self.source_mode,
            main_concept=self.main_concept,
            additions=tuple(self.additions),
            sliders=dict(self.sliders),
            debug=self.debug,
            limit=self.limit,
            image=base64.b64decode(self.image_base64) if self.image_base64 else None,
        )


class InteractionRequest(BaseModel):
    """Body of POST /interactions."""

    query: str
    candidate_id: str
    clicked: bool = True
    saved: bool = False
    dwell_ms: Optional[int] = Field(default=None, ge=0)


def _result_payload(item: ScoredCandidate, debug: bool) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "candidate_id": item.id,
        "collection_id": item.candidate.collection_id,
        "category": item.candidate.category,
        "score": item.final_score,
        "base_score": item.base_score,
    }
    if debug:
        payload["diagnostics"] = {
            **item.diagnostics,
            "adjusted_base_score": item.adjusted_base_score,
            "final_score": item.final_score,
        }
    return payload


def create_app(pipeline: Optional[SearchPipeline] = None, settings: Optional[AppSettings] = None):  # type: ignore[override]
    """Create a FastAPI app instance configured with the provided (or settings-built) search pipeline."""

    from fastapi import FastAPI, HTTPException, Request
    from fastapi.responses import JSONResponse

    settings = settings or AppSettings.from_env()
    configure_logging(settings.log_level)
    pipeline = pipeline or build_pipeline(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await pipeline.aclose()

    app = FastAPI(title="Design Search API", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(SearchUnavailableError)
    async def search_unavailable(_: Request, exc: SearchUnavailableError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"error": {"code": exc.code, "message": exc.message}})

    @app.get("/health")
    async def health() -> Dict[str, str]:
        """Return a simple health status payload."""

        return {"status": "ok"}

    @app.post("/search")
    async def search(request: SearchRequest) -> Dict[str, Any]:
        """Run a search query using the configured pipeline."""

        result = await pipeline.search(request.to_query())
        body: Dict[str, Any] = {
            "results": [_result_payload(item, request.debug) for item in result.items],
            "total": result.total,
            "route": result.route,
        }
        if request.debug:
            body["extensions"] = result.extensions
        return body

    @app.post("/interactions")
    async def record_interaction(request: InteractionRequest) -> Dict[str, str]:
        """Record a click, save or dwell time for a shown result."""

        metrics = pipeline.signals.metrics
        if metrics is None:
            raise HTTPException(status_code=503, detail="Metrics store is not configured.")
        await metrics.record_click(request.query, request.candidate_id, request.clicked, request.saved, request.dwell_ms)
        return {"status": "ok"}

    @app.get("/interactions/stats")
    async def interaction_stats() -> Dict[str, Any]:
        """Return impression and interaction totals."""

        metrics = pipeline.signals.metrics
        if metrics is None:
            raise HTTPException(status_code=503, detail="Metrics store is not configured.")
        return await metrics.interaction_stats()

    return app
