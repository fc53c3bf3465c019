# backend/app/addons/api/router.py
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from ..context import AddonContext
from ..domain.models import PROXY_METHODS, CallRequest, InstallRequest, LogsResponse
from ..errors import ErrorCode, Result, http_status_for
from ..services.logs import parse_tail
from ..services.registry import RecordNotFound

logger = logging.getLogger("addonhost.addons.api")


class BoundaryError(Exception):
    """Raised by route dependencies; rendered as the standard error envelope."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


# ----------------------------
# Envelope helpers
# ----------------------------

def _ok(data: Any = None, message: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    body: dict = {"success": True, "data": jsonable_encoder(data)}
    if message:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)


def _error(code: ErrorCode, message: str, data: Any = None) -> JSONResponse:
    body: dict = {"success": False, "error": code.value, "message": message}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return JSONResponse(status_code=http_status_for(code), content=body)


def _failed(result: Result) -> JSONResponse:
    err = result.error
    if err is None:
        logger.error("Failed result without an error: %r", result)
        return _error(ErrorCode.RUNTIME_ERROR, "Addon operation failed", data=result.value)
    if err.code in (ErrorCode.RUNTIME_ERROR, ErrorCode.TIMEOUT, ErrorCode.ADDON_UNREACHABLE):
        logger.error("Addon operation failed: %s", err)
    else:
        logger.info("Addon operation rejected: %s", err)
    return _error(err.code, err.message, data=result.value)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BoundaryError)
    async def _boundary_error(request: Request, exc: BoundaryError) -> JSONResponse:
        return _error(exc.code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(ErrorCode.VALIDATION_ERROR, "Invalid request body")

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": "INTERNAL_ERROR", "message": str(exc)})


# ----------------------------
# Dependencies
# ----------------------------

def get_addon_context(request: Request) -> AddonContext:
    return request.app.state.addon_context


def require_addons_enabled(ctx: AddonContext = Depends(get_addon_context)) -> AddonContext:
    # same policy for every addon route, listing included
    if not ctx.settings.addons_enabled:
        raise BoundaryError(ErrorCode.UNAVAILABLE, "Addons are disabled on this instance")
    return ctx


def current_user_id(request: Request, ctx: AddonContext = Depends(require_addons_enabled)) -> str:
    user_id = getattr(request.state, "user_id", None) or request.headers.get(ctx.settings.identity_header)
    if not user_id or not str(user_id).strip():
        raise BoundaryError(ErrorCode.UNAUTHORIZED, "Unauthorized")
    return str(user_id).strip()


router = APIRouter(
    prefix="/api/addons",
    tags=["addons"],
    dependencies=[Depends(require_addons_enabled)],
)


# ----------------------------
# Installed addons
# ----------------------------

@router.get("")
def api_list_addons(
    user_id: str = Depends(current_user_id),
    ctx: AddonContext = Depends(get_addon_context),
) -> JSONResponse:
    """List addons installed by the caller."""
    return _ok(ctx.registry.list_for_user(user_id))


@router.post("")
def api_install_addon(
    req: InstallRequest,
    user_id: str = Depends(current_user_id),
    ctx: AddonContext = Depends(get_addon_context),
) -> JSONResponse:
    """
    Install an addon from a container image and start it.

    Example:
      curl -X POST http://localhost:9001/api/addons \
        -H "X-User-Id: u1" -H "Content-Type: application/json" \
        -d '{"dockerImage": "addonhost-addon-echo"}'
    """
    logger.info("POST /api/addons called by %s with image %r", user_id, req.docker_image)
    result = ctx.lifecycle.install(user_id, req.docker_image)
    if not result.ok:
        return _failed(result)
    record = result.value
    return _ok(record, message=f'Addon "{record.display_name}" installed successfully')


@router.get("/available")
def api_available_addons(
    user_id: str = Depends(current_user_id),
    ctx: AddonContext = Depends(get_addon_context),
) -> JSONResponse:
    """List installable addons from the local addons directory."""
    return _ok(ctx.catalog.list_available())


@router.get("/{addon_id}")
def api_get_addon(
    addon_id: str,
    user_id: str = Depends(current_user_id),
    ctx: AddonContext = Depends(get_addon_context),
) -> JSONResponse:
    result = ctx.inspector.describe(user_id, addon_id)
    if not result.ok:
        return _failed(result)
    return _ok(result.value)


@router.post("/{addon_id}/stop")
def api_stop_addon(
    addon_id: str,
    user_id: str = Depends(current_user_id),
    ctx: AddonContext = Depends(get_addon_context),
) -> JSONResponse:
    logger.info("POST /api/addons/%s/stop called by %s", addon_id, user_id)
    result = ctx.lifecycle.stop(user_id, addon_id)
    if not result.ok:
        return _failed(result)
    record = result.value
    return _ok(record, message=f'Addon "{record.display_name}" stopped')


@router.post("/{addon_id}/call")
def api_call_addon(
    addon_id: str,
    req: CallRequest,
    user_id: str = Depends(current_user_id),
    ctx: AddonContext = Depends(get_addon_context),
) -> JSONResponse:
    """
    Call an endpoint of a running addon. The addon's own status code and body
    are reported under data; success only reflects the transport.
    """
    result = ctx.gateway.call(user_id, addon_id, req.endpoint, req.method, req.data)
    if not result.ok:
        return _failed(result)
    upstream = result.value
    return _ok({"status": upstream.status_code, "body": upstream.json_or_text()})


@router.get("/{addon_id}/logs")
def api_addon_logs(
    addon_id: str,
    tail: Optional[str] = Query(default=None),
    user_id: str = Depends(current_user_id),
    ctx: AddonContext = Depends(get_addon_context),
) -> JSONResponse:
    lines = parse_tail(tail)
    result = ctx.logs.get_logs(user_id, addon_id, lines)
    if not result.ok:
        return _failed(result)

    try:
        record = ctx.registry.get_owned(user_id, addon_id)
    except RecordNotFound:
        return _error(ErrorCode.NOT_FOUND, "Addon not found")

    return _ok(
        LogsResponse(logs=result.value, tail=lines, addon_name=record.display_name, status=record.status)
    )


# ----------------------------
# Browser passthrough
# ----------------------------

@router.api_route("/proxy/{addon_id}/{path:path}", methods=list(PROXY_METHODS))
async def api_proxy_addon(
    addon_id: str,
    path: str,
    request: Request,
    user_id: str = Depends(current_user_id),
    ctx: AddonContext = Depends(get_addon_context),
) -> Response:
    """
    Forward a browser request to the addon and return its response as-is
    (status code, content type and body).
    """
    body = await request.body()
    headers = {}
    if request.headers.get("content-type"):
        headers["Content-Type"] = request.headers["content-type"]
    if request.headers.get("accept"):
        headers["Accept"] = request.headers["accept"]

    result = await run_in_threadpool(
        ctx.gateway.call,
        user_id,
        addon_id,
        "/" + path,
        request.method,
        None,
        query=request.query_params.multi_items(),
        headers=headers,
        raw_body=body or None,
    )
    if not result.ok:
        return _failed(result)

    upstream = result.value
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.content_type or "application/octet-stream",
        headers={"Cache-Control": "no-cache"},
    )
