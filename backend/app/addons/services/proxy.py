from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

import requests

from ..domain.models import PROXY_METHODS, AddonStatus, ProxyResponse
from ..errors import ErrorCode, Result, not_found
from .registry import AddonRegistry, RecordNotFound

logger = logging.getLogger("addonhost.proxy")

AUTH_HEADER = "X-Addon-Auth"
DEFAULT_CALL_TIMEOUT = 30.0

_SKIP_FORWARD_HEADERS = {"host", "content-length", "connection", "cookie", "authorization", AUTH_HEADER.lower()}


class ProxyGateway:
    """
    Forwards calls into a running addon's internal endpoint.

    - The addon's response (status, content type, body) is returned unchanged,
      including 4xx/5xx. Only transport failures become ADDON_UNREACHABLE.
    - No lifecycle lock is taken: the record is read once and the call proceeds.
      If the addon is stopped meanwhile the call fails as unreachable.
    - Never retries; calls may not be idempotent.
    """

    def __init__(
        self,
        registry: AddonRegistry,
        *,
        timeout: float = DEFAULT_CALL_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.registry = registry
        self.timeout = timeout
        self.session = session or requests.Session()

    def call(
        self,
        owner_id: str,
        addon_id: str,
        endpoint: Any,
        method: Any = "POST",
        payload: Any = None,
        *,
        query: Optional[Union[Mapping[str, str], Sequence[Tuple[str, str]]]] = None,
        headers: Optional[Mapping[str, str]] = None,
        raw_body: Optional[bytes] = None,
    ) -> Result[ProxyResponse]:
        if not isinstance(endpoint, str) or not endpoint.startswith("/"):
            return Result.failure(
                ErrorCode.VALIDATION_ERROR,
                "endpoint is required and must start with '/'",
                addon_id=addon_id,
                operation="call",
            )
        method = method.upper() if isinstance(method, str) else method
        if method not in PROXY_METHODS:
            return Result.failure(
                ErrorCode.VALIDATION_ERROR,
                f"Invalid method. Must be one of: {', '.join(PROXY_METHODS)}",
                addon_id=addon_id,
                operation="call",
            )

        try:
            record = self.registry.get_owned(owner_id, addon_id)
        except RecordNotFound:
            return not_found(addon_id, "call")

        if record.status != AddonStatus.RUNNING or not record.internal_endpoint:
            return Result.failure(
                ErrorCode.ADDON_NOT_RUNNING,
                f"Addon is not running (status: {record.status.value})",
                addon_id=addon_id,
                operation="call",
            )

        url = f"{record.internal_endpoint.rstrip('/')}{endpoint}"
        out_headers = {
            k: v for k, v in (headers or {}).items() if k.lower() not in _SKIP_FORWARD_HEADERS
        }
        out_headers[AUTH_HEADER] = record.auth_token or ""

        kwargs: dict = {"params": query or None, "headers": out_headers, "timeout": self.timeout}
        if raw_body is not None:
            kwargs["data"] = raw_body
        elif payload is not None:
            kwargs["json"] = payload

        logger.info("Calling addon %s: %s %s", addon_id, method, endpoint)
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.warning("Addon %s timed out after %ss on %s %s", addon_id, self.timeout, method, endpoint)
            return Result.failure(
                ErrorCode.ADDON_UNREACHABLE,
                f"Addon did not respond within {self.timeout}s: {e}",
                addon_id=addon_id,
                operation="call",
            )
        except requests.RequestException as e:
            logger.warning("Addon %s unreachable on %s %s: %s", addon_id, method, endpoint, e)
            return Result.failure(
                ErrorCode.ADDON_UNREACHABLE,
                f"Addon is unreachable: {e}",
                addon_id=addon_id,
                operation="call",
            )

        logger.info("Addon %s answered %s %s with HTTP %d", addon_id, method, endpoint, resp.status_code)
        return Result.success(
            ProxyResponse(
                status_code=resp.status_code,
                content_type=resp.headers.get("Content-Type"),
                content=resp.content or b"",
            )
        )

    def close(self) -> None:
        self.session.close()
