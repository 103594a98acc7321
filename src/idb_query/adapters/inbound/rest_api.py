"""REST API adapter for the query layer.

This module provides a FastAPI-based REST API for running declarative
queries against a Database.

Endpoints:
    GET  /health                         - Health check
    GET  /stats                          - Database and engine statistics
    POST /collections/{name}/select      - Select records
    POST /collections/{name}/insert      - Insert one record or a batch
    POST /collections/{name}/update      - Replace or merge a record
    POST /collections/{name}/delete      - Delete a record
    GET  /collections/{name}/count       - Count records
    GET  /collections/{name}/last        - Greatest primary key

Usage:
    from idb_query.adapters.inbound.rest_api import create_app
    from idb_query.application import Database

    app = create_app(Database(schema))
    # Run with uvicorn: uvicorn app:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import AliasChoices, BaseModel, Field

from idb_query import __version__
from idb_query.application import Database
from idb_query.infrastructure import get_config, setup_logging, setup_metrics, setup_tracing
from idb_query.ports.inbound import StorageFailure, UnsupportedPayload

T = TypeVar("T")

_FAILURE_STATUS = {
    "ConstraintError": 409,
    "NotFoundError": 404,
    "DataError": 400,
}


class SelectRequest(BaseModel):
    """Request model for select."""

    where: dict[str, Any] = Field(default_factory=dict, description="Equality pairs and range")
    limit: int | None = Field(None, ge=1, description="Maximum number of records")


class InsertRequest(BaseModel):
    """Request model for insert."""

    records: Any = Field(
        ...,
        validation_alias=AliasChoices("set", "records"),
        description="One record or a list of records",
    )


class UpdateRequest(BaseModel):
    """Request model for update."""

    where: dict[str, Any] = Field(..., description="Names the primary key")
    patch: Any = Field(
        ...,
        validation_alias=AliasChoices("set", "patch"),
        description="New record, or fields to merge",
    )
    merge: bool = Field(False, description="Shallow-merge into the existing record")


class DeleteRequest(BaseModel):
    """Request model for delete."""

    where: dict[str, Any] = Field(..., description="Names the primary key")


class RecordsResponse(BaseModel):
    """Response model for select and insert."""

    records: list[Any] = Field(default_factory=list, description="Records")
    count: int = Field(0, description="Number of records")


class UpdateResponse(BaseModel):
    """Response model for update."""

    updated: bool = Field(..., description="False when no primary key was given")
    record: Any = Field(None, description="The record as written")


class DeleteResponse(BaseModel):
    """Response model for delete."""

    deleted: bool | None = Field(
        ..., description="Whether a record was removed (null when no primary key was given)"
    )


class CountResponse(BaseModel):
    """Response model for count."""

    count: int = Field(..., description="Number of records")


class LastResponse(BaseModel):
    """Response model for last."""

    key: Any = Field(None, description="Greatest primary key, null when empty")


class StatsResponse(BaseModel):
    """Response model for database statistics."""

    database: str = Field(..., description="Database name")
    version: int = Field(..., description="Schema version")
    connected: bool = Field(..., description="Whether the database is connected")
    collections: list[str] = Field(default_factory=list, description="Collection names")
    engine: dict[str, int] = Field(default_factory=dict, description="Engine statistics")


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="API version")


def _http_error(exc: Exception) -> HTTPException:
    """Map a query layer failure to an HTTP error."""
    if isinstance(exc, UnsupportedPayload):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, StorageFailure):
        return HTTPException(status_code=_FAILURE_STATUS.get(exc.error_name, 500), detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


async def _run(query: Awaitable[T]) -> T:
    try:
        return await query
    except (UnsupportedPayload, StorageFailure, ValueError) as exc:
        raise _http_error(exc) from exc


def create_app(db: Database) -> FastAPI:
    """Create a FastAPI application for a database.

    The application connects the database on startup (unless it is
    already connected) and closes it on shutdown.

    Args:
        db: The database to serve.

    Returns:
        A configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = not db.is_connected
        if owned:
            await db.connect()
        try:
            yield
        finally:
            if owned:
                await db.close()

    app = FastAPI(
        title="idb-query API",
        description="REST API for declarative queries over an indexed object store",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_connection() -> None:
        if not db.is_connected:
            raise HTTPException(status_code=503, detail="Database not connected")

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy" if db.is_connected else "unhealthy",
            version=__version__,
        )

    @app.get("/stats", response_model=StatsResponse, tags=["Stats"])
    async def get_stats() -> StatsResponse:
        """Get database statistics."""
        require_connection()
        stats = db.get_stats()
        return StatsResponse(
            database=stats["database"],
            version=stats["version"],
            connected=stats["connected"],
            collections=stats.get("collections", []),
            engine=stats.get("engine", {}),
        )

    @app.post("/collections/{name}/select", response_model=RecordsResponse, tags=["Queries"])
    async def select(name: str, request: SelectRequest) -> RecordsResponse:
        """Select the records matching a filter."""
        require_connection()
        records = await _run(db.select(name, request.where, request.limit))
        return RecordsResponse(records=records, count=len(records))

    @app.post("/collections/{name}/insert", response_model=RecordsResponse, tags=["Queries"])
    async def insert(name: str, request: InsertRequest) -> RecordsResponse:
        """Insert one record or a list of records atomically."""
        require_connection()
        await _run(db.insert(name, request.records))
        records = request.records if isinstance(request.records, list) else [request.records]
        return RecordsResponse(records=records, count=len(records))

    @app.post("/collections/{name}/update", response_model=UpdateResponse, tags=["Queries"])
    async def update(name: str, request: UpdateRequest) -> UpdateResponse:
        """Replace or merge the record named by primary key."""
        require_connection()
        record = await _run(db.update(name, request.where, request.patch, request.merge))
        return UpdateResponse(updated=record is not None, record=record)

    @app.post("/collections/{name}/delete", response_model=DeleteResponse, tags=["Queries"])
    async def delete(name: str, request: DeleteRequest) -> DeleteResponse:
        """Delete the record named by primary key."""
        require_connection()
        deleted = await _run(db.delete(name, request.where))
        return DeleteResponse(deleted=deleted)

    @app.get("/collections/{name}/count", response_model=CountResponse, tags=["Queries"])
    async def count(name: str) -> CountResponse:
        """Count the records of a collection."""
        require_connection()
        return CountResponse(count=await _run(db.count(name)))

    @app.get("/collections/{name}/last", response_model=LastResponse, tags=["Queries"])
    async def last(name: str) -> LastResponse:
        """Return the greatest primary key of a collection."""
        require_connection()
        return LastResponse(key=await _run(db.last(name)))

    return app


def run_server(
    db: Database,
    host: str = "0.0.0.0",
    port: int = 8080,
) -> None:
    """Run the REST API server.

    Args:
        db: The database to serve.
        host: Host to bind to.
        port: Port to bind to.
    """
    import uvicorn

    app = create_app(db)
    uvicorn.run(app, host=host, port=port)


def main() -> None:
    """Serve the database described by the configured schema file."""
    config = get_config()
    setup_logging(config.observability.log_level, config.observability.log_format)
    setup_tracing(config.observability.otel_service_name, config.observability.otel_endpoint)
    metrics = setup_metrics(config.server.metrics_port)

    schema: dict[str, Any] = {}
    if config.store.schema_path is not None:
        schema = json.loads(config.store.schema_path.read_text())

    db = Database(schema, config=config, metrics=metrics)
    run_server(db, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
