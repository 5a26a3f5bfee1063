"""FastAPI server for programmatic gatekeeper access."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import click
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from gatekeeper import __version__
from gatekeeper.config import Settings, load_config
from gatekeeper.feedback.ledger import FeedbackLedger
from gatekeeper.routing.models import Request, TaskCategory, parse_category
from gatekeeper.routing.policy import DelegationPolicy
from gatekeeper.validation.engine import ValidationEngine
from gatekeeper.validation.gate import QualityGate


class ClassifyRequest(BaseModel):
    text: str
    context: dict[str, str] = Field(default_factory=dict)


class ValidateRequest(BaseModel):
    artifact: str
    category: str
    request: str = ""
    as_of_year: int | None = None


class ServerState:
    """Settings and the shared ledger connection, created on first use."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self._ledger: FeedbackLedger | None = None
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = load_config()
        return self._settings

    async def ledger(self) -> FeedbackLedger:
        async with self._lock:
            if self._ledger is None:
                self.settings.ensure_dirs()
                ledger = FeedbackLedger(str(self.settings.ledger_path))
                await ledger.open()
                self._ledger = ledger
        return self._ledger

    async def close(self) -> None:
        if self._ledger is not None:
            await self._ledger.close()
            self._ledger = None


def _category(value: str) -> TaskCategory:
    try:
        return parse_category(value)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API app; settings are loaded lazily when not given."""
    state = ServerState(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await state.close()

    app = FastAPI(
        title="Gatekeeper API",
        version=__version__,
        description="Delegation routing and quality gating for worker output",
        lifespan=lifespan,
    )
    app.state.gatekeeper = state
    start_time = time.monotonic()

    async def get_ledger() -> FeedbackLedger:
        return await state.ledger()

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check."""
        uptime = time.monotonic() - start_time
        return {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(uptime, 1),
            "registry_version": state.settings.registry.version,
        }

    @app.post("/api/classify")
    async def classify(body: ClassifyRequest) -> dict[str, Any]:
        """Delegation decision for a request."""
        policy = DelegationPolicy(state.settings.token_thresholds)
        return policy.decide(body.text, body.context).to_dict()

    @app.post("/api/validate")
    async def validate(body: ValidateRequest) -> dict[str, Any]:
        """Four-phase validation and gate disposition for an artifact."""
        category = _category(body.category)
        registry = state.settings.registry
        if body.as_of_year is not None:
            request = Request(text=body.request, as_of_year=body.as_of_year)
        else:
            request = Request(text=body.request)
        result = ValidationEngine(registry).validate(
            body.artifact, category, request.validation_context()
        )
        disposition = QualityGate(registry).decide(result, category)
        return {
            "category": category.value,
            "disposition": disposition.value,
            "validation": result.to_dict(),
        }

    @app.get("/api/history")
    async def history(
        limit: int = 20,
        category: str | None = None,
        ledger: FeedbackLedger = Depends(get_ledger),
    ) -> dict[str, Any]:
        """Recent ledger entries."""
        cat = _category(category).value if category else None
        entries = await ledger.entries(cat, limit=limit)
        return {
            "entries": [e.to_dict() for e in entries],
            "count": len(entries),
            "limit": limit,
        }

    @app.get("/api/issues")
    async def issues(
        category: str,
        window: int = 50,
        ledger: FeedbackLedger = Depends(get_ledger),
    ) -> dict[str, Any]:
        """Recurring issues for a category over the recent window."""
        cat = _category(category)
        ranked = await ledger.recurring_issues(cat.value, window)
        return {
            "category": cat.value,
            "window": window,
            "issues": [{"issue": issue, "frequency": count} for issue, count in ranked],
        }

    return app


app = create_app()


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--log-level", default="info", help="uvicorn log level")
def main(port: int, host: str, log_level: str) -> None:
    """Start the gatekeeper API server."""
    import uvicorn

    from gatekeeper.logging_config import setup_logging

    setup_logging(log_level)
    uvicorn.run(app, host=host, port=port, log_level=log_level)
