"""Entry point for the FastAPI-powered collection mirror."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any, get_args

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles

from .blob_store import FileBlobStore
from .config import settings
from .database import Database
from .errors import PersistenceError, UpstreamError
from .models import COLLECTION_STATUSES, Snapshot, SubjectType
from .services.douban import DoubanClient
from .services.image_cache import ImageCache
from .services.reconciler import Reconciler
from .snapshot_store import SnapshotStore
from .web import render_index_page

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app: FastAPI

BUCKET_ROUTES: dict[str, str] = {
    "movies": "movies",
    "tvshows": "tvShows",
    "books": "books",
}
SUBJECT_TYPES: tuple[str, ...] = get_args(SubjectType)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    upstream_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.douban_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    image_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.image_timeout_seconds, connect=5.0)
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    blob_store = FileBlobStore(settings.resolved_image_cache_dir)
    image_cache = ImageCache(settings, image_http_client, blob_store)
    douban = DoubanClient(settings, upstream_http_client)
    reconciler = Reconciler.from_settings(
        settings, douban, image_cache, SnapshotStore(database.session_factory)
    )

    fastapi_app.state.reconciler = reconciler
    fastapi_app.state.image_cache = image_cache
    fastapi_app.state.database = database
    logger.info("Image cache ready at %s", blob_store.root)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Local mirror of Douban movie, TV and book collections",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    fastapi_app.mount(
        settings.image_url_prefix,
        StaticFiles(directory=settings.resolved_image_cache_dir, check_dir=False),
        name="cached-images",
    )
    return fastapi_app


def get_reconciler(fastapi_app: FastAPI) -> Reconciler:
    reconciler = getattr(fastapi_app.state, "reconciler", None)
    if not isinstance(reconciler, Reconciler):
        raise RuntimeError("Reconciler not initialised")
    return reconciler


def get_image_cache(fastapi_app: FastAPI) -> ImageCache:
    cache = getattr(fastapi_app.state, "image_cache", None)
    if not isinstance(cache, ImageCache):
        raise RuntimeError("Image cache not initialised")
    return cache


def _coerce_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return bool(value)
    return False


def register_routes(fastapi_app: FastAPI) -> None:
    async def _load_snapshot(
        uid: str, *, refresh: bool = False, validate: bool = False
    ) -> Snapshot:
        reconciler = get_reconciler(fastapi_app)
        try:
            if refresh:
                return await reconciler.build_full(uid)
            return await reconciler.load_or_build(uid, validate_images=validate)
        except UpstreamError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except PersistenceError as exc:
            logger.exception("Snapshot storage failed for %s", uid)
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @fastapi_app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        return HTMLResponse(
            render_index_page(settings, base_url=str(request.base_url).rstrip("/"))
        )

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        database = getattr(fastapi_app.state, "database", None)
        if isinstance(database, Database) and not await database.ping():
            raise HTTPException(status_code=503, detail="Database unavailable")
        return {"status": "ok"}

    @fastapi_app.get("/api/users")
    async def list_users() -> dict[str, Any]:
        reconciler = get_reconciler(fastapi_app)
        try:
            users = await reconciler.list_users()
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"success": True, "data": users}

    @fastapi_app.get("/api/users/{uid}")
    async def user_snapshot(
        uid: str, refresh: str | None = None, validate: str | None = None
    ) -> dict[str, Any]:
        forced = _coerce_bool(refresh)
        snapshot = await _load_snapshot(
            uid, refresh=forced, validate=_coerce_bool(validate)
        )
        payload: dict[str, Any] = {"success": True, "data": snapshot.to_payload()}
        if forced:
            payload["message"] = "Fetched latest data from upstream"
        return payload

    @fastapi_app.delete("/api/users/{uid}")
    async def remove_user(uid: str) -> dict[str, Any]:
        reconciler = get_reconciler(fastapi_app)
        try:
            removed = await reconciler.remove(uid)
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"success": True, "data": {"uid": uid, "removed": removed}}

    @fastapi_app.get("/api/users/{uid}/stats")
    async def user_stats(uid: str) -> dict[str, Any]:
        snapshot = await _load_snapshot(uid)
        return {"success": True, "data": snapshot.stats.model_dump(by_alias=True)}

    @fastapi_app.get("/api/users/{uid}/{bucket}")
    async def user_bucket(
        uid: str,
        bucket: str,
        status: str | None = None,
        refresh: str | None = None,
    ) -> dict[str, Any]:
        bucket_name = BUCKET_ROUTES.get(bucket.lower())
        if bucket_name is None:
            raise HTTPException(status_code=404, detail=f"Unknown collection {bucket}")
        if status and status not in COLLECTION_STATUSES:
            raise HTTPException(status_code=400, detail=f"Unsupported status {status}")

        snapshot = await _load_snapshot(uid, refresh=_coerce_bool(refresh))
        items = snapshot.items.bucket(bucket_name)
        if status:
            items = [item for item in items if item.status == status]
        return {"success": True, "data": [item.to_payload() for item in items]}

    async def _fetch(uid: str) -> dict[str, Any]:
        snapshot = await _load_snapshot(uid, refresh=True)
        return {
            "success": True,
            "message": f"Fetched latest data for user {uid}",
            "data": snapshot.to_payload(),
        }

    @fastapi_app.post("/api/fetch/{uid}")
    async def fetch_user(uid: str) -> dict[str, Any]:
        return await _fetch(uid)

    @fastapi_app.get("/api/fetch/{uid}")
    async def fetch_user_get(uid: str) -> dict[str, Any]:
        return await _fetch(uid)

    @fastapi_app.get("/api/items/{subject_type}/{subject_id}")
    async def item_detail(subject_type: str, subject_id: str) -> dict[str, Any]:
        if subject_type not in SUBJECT_TYPES:
            raise HTTPException(status_code=400, detail="Unsupported subject type")
        reconciler = get_reconciler(fastapi_app)
        try:
            detail = await reconciler.item_detail(subject_type, subject_id)  # type: ignore[arg-type]
        except UpstreamError as exc:
            status_code = 404 if exc.status_code == 404 else 502
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
        return {"success": True, "data": detail.to_payload()}

    @fastapi_app.get("/api/cache/stats")
    async def cache_stats() -> dict[str, Any]:
        cache = get_image_cache(fastapi_app)
        return {"success": True, "data": cache.stats().to_payload()}

    @fastapi_app.get("/api/cache/files")
    async def cache_files() -> dict[str, Any]:
        cache = get_image_cache(fastapi_app)
        entries = [entry.to_payload() for entry in cache.list_entries()]
        return {"success": True, "data": entries}

    @fastapi_app.post("/api/cache/clean")
    async def cache_clean(request: Request) -> dict[str, Any]:
        cache = get_image_cache(fastapi_app)
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")

        names = payload.get("names") or []
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise HTTPException(status_code=400, detail="names must be a list of strings")
        older_than: timedelta | None = None
        raw_days = payload.get("olderThanDays")
        if raw_days is not None:
            try:
                days = float(raw_days)
            except (TypeError, ValueError) as exc:
                raise HTTPException(
                    status_code=400, detail="olderThanDays must be a number"
                ) from exc
            if days < 0:
                raise HTTPException(
                    status_code=400, detail="olderThanDays must not be negative"
                )
            older_than = timedelta(days=days)

        removed = cache.clean(names=names, older_than=older_than)
        return {
            "success": True,
            "message": f"Removed {len(removed)} cached file(s)",
            "data": removed,
        }


app = create_app()
