"""
App factory - the FastAPI surface of the admin.

Translates HTTP requests into framework-neutral ``RawRequest`` objects,
runs them through the ``AdminRouter`` and maps the operation result onto a
response:

- ``Redirect`` -> 303 with ``Location``
- ``Rendered`` -> JSON ``{props, message?, error?, validation?}``
  (200, or 422 when an error or validation failure is reported)
- ``NotFound`` -> 404 JSON
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.datastructures import UploadFile
from starlette.staticfiles import StaticFiles

from dazzle_admin._version import get_version
from dazzle_admin.runtime.config import AdminConfig
from dazzle_admin.runtime.file_storage import LocalStorageBackend, StorageBackend, UploadedBlob
from dazzle_admin.runtime.introspection import SQLiteIntrospector
from dazzle_admin.runtime.logging import get_http_logger, setup_logging
from dazzle_admin.runtime.registry import ResourceRegistry
from dazzle_admin.runtime.request_parser import FormValue, RawRequest
from dazzle_admin.runtime.responses import NotFound, OperationResult, Redirect, Rendered
from dazzle_admin.runtime.router import AdminRouter
from dazzle_admin.runtime.store import DataStore, SQLiteDataStore

logger = get_http_logger()

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


# =============================================================================
# Request / Response Translation
# =============================================================================


async def to_raw_request(request: Request) -> RawRequest:
    """Read method, path, query, form items and body from a starlette request."""
    content_type = request.headers.get("content-type", "")
    form_items: list[tuple[str, FormValue]] = []
    body = b""

    if request.method == "POST" and content_type.startswith(_FORM_TYPES):
        form = await request.form()
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                form_items.append(
                    (
                        key,
                        UploadedBlob(
                            filename=value.filename or "",
                            content_type=value.content_type or "application/octet-stream",
                            data=await value.read(),
                        ),
                    )
                )
            else:
                form_items.append((key, value))
    else:
        body = await request.body()

    return RawRequest(
        method=request.method,
        path=request.url.path,
        query_string=request.url.query,
        form_items=tuple(form_items),
        body=body,
    )


def to_response(result: OperationResult) -> Response:
    """Map an operation result onto an HTTP response."""
    if isinstance(result, Redirect):
        return RedirectResponse(result.location, status_code=303)
    if isinstance(result, Rendered):
        return JSONResponse(
            status_code=result.http_status, content=jsonable_encoder(result.to_dict())
        )
    assert isinstance(result, NotFound)
    content: dict[str, Any] = {"notFound": True}
    if result.reason:
        content["detail"] = result.reason
    return JSONResponse(status_code=404, content=content)


# =============================================================================
# Application
# =============================================================================


def create_app(
    registry: ResourceRegistry,
    config: AdminConfig | None = None,
    store: DataStore | None = None,
    storage: StorageBackend | None = None,
) -> FastAPI:
    """
    Create a FastAPI application serving the admin for ``registry``.

    Args:
        registry: Administrable resources
        config: Admin configuration (default: ``AdminConfig()``)
        store: Data store (default: SQLite at ``config.db_path``)
        storage: File storage (default: local directory at ``config.uploads_path``)

    Returns:
        FastAPI application

    Example:
        >>> registry = ResourceRegistry.from_introspector(SQLiteIntrospector("app.db"))
        >>> app = create_app(registry, AdminConfig(db_path=Path("app.db")))
        >>> # Run with uvicorn: uvicorn mymodule:app
    """
    config = config or AdminConfig()
    if store is None:
        store = SQLiteDataStore(config.db_path)
    if storage is None:
        storage = LocalStorageBackend(config.uploads_path, config.uploads_url)

    router = AdminRouter(registry, store, config, storage)
    app = FastAPI(title="Dazzle Admin", version=get_version(), debug=config.debug)
    app.state.admin_router = router
    app.state.admin_config = config

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Any) -> Response:
        start = time.perf_counter()
        response: Response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({latency_ms:.1f}ms)"
        )
        return response

    async def admin_endpoint(request: Request) -> Response:
        raw = await to_raw_request(request)
        return to_response(await router.handle(raw))

    if isinstance(storage, LocalStorageBackend):
        app.mount(
            config.uploads_url,
            StaticFiles(directory=storage.base_path, check_dir=False),
            name="admin-files",
        )

    base = config.base_path
    app.add_api_route(base or "/", admin_endpoint, methods=["GET"], include_in_schema=False)
    app.add_api_route(
        f"{base}/{{path:path}}",
        admin_endpoint,
        methods=["GET", "POST", "DELETE"],
        include_in_schema=False,
    )

    return app


def create_app_factory() -> FastAPI:
    """
    ASGI factory for deployment, configured from ``DAZZLE_ADMIN_*`` variables.

    Resources are introspected from the SQLite database at
    ``DAZZLE_ADMIN_DB_PATH``.

    Usage:
        uvicorn dazzle_admin.runtime.app_factory:create_app_factory --factory --port 8000
    """
    config = AdminConfig.from_env()
    setup_logging(log_dir=config.log_dir, level=config.log_level)
    if not Path(config.db_path).exists():
        raise RuntimeError(
            f"Database not found at {config.db_path}. Set DAZZLE_ADMIN_DB_PATH to an existing file."
        )
    registry = ResourceRegistry.from_introspector(SQLiteIntrospector(config.db_path))
    return create_app(registry, config)


def run_app(
    registry: ResourceRegistry,
    config: AdminConfig | None = None,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    """Run the admin with uvicorn."""
    import uvicorn

    uvicorn.run(create_app(registry, config), host=host, port=port)


__all__ = [
    "create_app",
    "create_app_factory",
    "run_app",
    "to_raw_request",
    "to_response",
]
