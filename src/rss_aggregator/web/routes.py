# ABOUTME: FastAPI route handlers for the refresh triggers.
# ABOUTME: Cron endpoint (shared secret) and admin endpoint (bearer token, forced, audited).

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from rss_aggregator.config import Settings
from rss_aggregator.errors import ConfigurationError, FeedNotFoundError, PersistenceError
from rss_aggregator.models import AdminRefreshRequest, RequestContext
from rss_aggregator.services.store import FeedStore
from rss_aggregator.services.triggers import (
    run_admin_refresh,
    run_scheduled_refresh,
    verify_admin_credential,
    verify_cron_credential,
)

log = structlog.get_logger()
router = APIRouter()


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> FeedStore:
    return request.app.state.store


def require_admin(
    authorization: str | None = Header(None),
    x_admin_id: str | None = Header(None),
    settings: Settings = Depends(get_settings_dep),
) -> str:
    """Acting administrator identity, after the admin bearer token has been verified."""
    try:
        authorized = verify_admin_credential(authorization, settings)
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail="Server misconfigured") from e
    if not authorized:
        log.warning("admin_auth_failed", admin_id=x_admin_id)
        raise HTTPException(status_code=401, detail="Unauthorized")

    if not x_admin_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if x_admin_id not in settings.admin_id_set:
        raise HTTPException(status_code=403, detail="Forbidden: Admin access required")
    return x_admin_id


def _request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.headers.get("x-real-ip") or (request.client.host if request.client else None)
    return RequestContext(ip_address=ip, user_agent=request.headers.get("user-agent"))


@router.get("/api/cron/refresh-feeds")
async def cron_refresh_feeds(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings_dep),
    store: FeedStore = Depends(get_store),
):
    """Timed trigger: refresh all due feeds and return the aggregate summary."""
    try:
        authorized = verify_cron_credential(authorization, settings)
    except ConfigurationError:
        return JSONResponse({"error": "Server misconfigured"}, status_code=500)
    if not authorized:
        log.warning("cron_auth_failed")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        summary = await run_scheduled_refresh(store, settings)
    except PersistenceError as e:
        log.error("cron_refresh_failed", error=str(e))
        return JSONResponse(
            {"error": "Cron execution failed", "message": str(e)}, status_code=500
        )

    return {"success": True, "summary": summary.to_public()}


@router.post("/api/admin/feeds/refresh")
async def admin_refresh_feeds(
    request: Request,
    body: AdminRefreshRequest | None = None,
    admin_id: str = Depends(require_admin),
    settings: Settings = Depends(get_settings_dep),
    store: FeedStore = Depends(get_store),
):
    """Administrative trigger: force-refresh one feed or all feeds, with per-feed detail."""
    feed_id = body.feed_id if body else None
    try:
        summary = await run_admin_refresh(
            store,
            admin_id=admin_id,
            feed_id=feed_id,
            settings=settings,
            request_context=_request_context(request),
        )
    except FeedNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except PersistenceError as e:
        log.error("admin_refresh_failed", admin_id=admin_id, error=str(e))
        return JSONResponse({"error": "Refresh failed", "message": str(e)}, status_code=500)

    return {"success": True, "summary": summary.to_detailed()}
