from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

from . import http_client
from .errors import NetworkError


class Submitter(Protocol):
    async def submit(self, payload: dict[str, Any]) -> Mapping[str, Any]: ...


def is_success(response: Any) -> bool:
    """Only an explicit ``{"success": True}`` counts as acknowledged."""

    if not isinstance(response, Mapping):
        return False
    return response.get("success") is True


class CallableSubmitter:
    """Adapt an ``async def submit(payload)`` callable (e.g. a widget's ``onSave``)."""

    def __init__(self, func: Callable[[dict[str, Any]], Awaitable[Mapping[str, Any]]]) -> None:
        self._func = func

    async def submit(self, payload: dict[str, Any]) -> Mapping[str, Any]:
        return await self._func(payload)


class HttpSubmitter:
    """POST each payload to a REST endpoint from a worker thread."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout_s: float = 10.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = http_client.build_endpoint_url(endpoint)
        if not self.url:
            raise ValueError("endpoint is required")
        self.timeout_s = timeout_s
        self.headers = dict(headers or {})

    async def submit(self, payload: dict[str, Any]) -> Mapping[str, Any]:
        status, body = await asyncio.to_thread(
            http_client.post_json,
            self.url,
            payload,
            headers=self.headers,
            timeout_s=self.timeout_s,
        )
        if status < 200 or status >= 300:
            detail = (body or {}).get("error") if isinstance(body, dict) else None
            raise NetworkError(
                f"submit rejected with HTTP {status}" + (f": {detail}" if detail else ""),
                status=status,
            )
        if body is None:
            return {"success": True}
        if "success" not in body:
            return {**body, "success": True}
        return body
