from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile, status
from fastapi.responses import JSONResponse

from sales_import.config.loader import load_config
from sales_import.db.connection import ConnectionProvider, PooledConnectionProvider
from sales_import.logging.init import setup_logging
from sales_import.models.config_models import AppConfig, ImportOptions
from sales_import.services.importer import import_csv

"""HTTP boundary for the import pipeline.

POST /api/import takes a multipart upload (``file``), a JSON-encoded column
mapping (``mappings``) and the import type (``type``), and answers with the
ImportOutcome as JSON: 200 when the import succeeded, 400 otherwise.

Run with: uvicorn sales_import.api.app:create_app --factory
"""

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_CONTENT_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel", "text/plain"}

router = APIRouter(prefix="/api")


def _error(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def get_provider(request: Request) -> ConnectionProvider | None:
    return request.app.state.provider


def get_options(request: Request) -> ImportOptions:
    return request.app.state.options


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/import")
def import_upload(
    file: UploadFile | None = File(default=None),
    mappings: str = Form(default="{}"),
    import_type: str = Form(default="sales", alias="type"),
    dry_run: bool = Form(default=False, alias="dryRun"),
    provider: ConnectionProvider | None = Depends(get_provider),
    options: ImportOptions = Depends(get_options),
) -> JSONResponse:
    """Import one uploaded CSV file."""
    if file is None:
        return _error("No file uploaded")
    try:
        if file.content_type not in ALLOWED_CONTENT_TYPES:
            return _error(f"Invalid file type. Expected csv, got {file.content_type}")
        content = file.file.read(MAX_UPLOAD_BYTES + 1)
        if len(content) > MAX_UPLOAD_BYTES:
            return _error("File too large. Maximum size is 10MB.")
    finally:
        file.file.close()

    try:
        mapping: Any = json.loads(mappings or "{}")
    except json.JSONDecodeError as e:
        return _error(f"Invalid mappings JSON: {e.msg}")
    if not isinstance(mapping, dict):
        return _error("Invalid mappings JSON: expected an object")

    if dry_run:
        options = replace(options, dry_run=True)
    outcome = import_csv(
        import_type,
        content,
        {str(k): str(v) for k, v in mapping.items()},
        provider,
        options,
        source=file.filename or "<upload>",
    )
    logger.info(
        "upload=%s type=%s success=%s imported=%d errors=%d",
        file.filename, import_type, outcome.success, outcome.imported_count, outcome.error_count,
    )
    code = status.HTTP_200_OK if outcome.success else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=json.loads(json.dumps(outcome.to_dict(), default=str)))


def create_app(
    provider: ConnectionProvider | None = None,
    options: ImportOptions | None = None,
    config: AppConfig | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    Without an explicit provider the pool is built from ``config`` (loaded
    from .env + config/import.yml when not given).
    """
    setup_logging()
    if provider is None:
        if config is None:
            load_dotenv(dotenv_path=Path(".env"), override=True)
            config = load_config()
        provider = PooledConnectionProvider.from_config(config.database, config.pool)
    if options is None:
        options = config.options if config is not None else ImportOptions()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        close = getattr(app.state.provider, "close", None)
        if close is not None:
            close()

    app = FastAPI(title="Sales import", version="0.1.0", lifespan=lifespan)
    app.state.provider = provider
    app.state.options = options
    app.include_router(router)
    return app
