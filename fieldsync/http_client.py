from __future__ import annotations

import json
from http.client import HTTPConnection, HTTPException, HTTPSConnection
from typing import Any
from urllib.parse import urlparse

from .errors import NetworkError


def build_endpoint_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def post_json(
    url: str,
    body: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
    timeout_s: float = 10.0,
) -> tuple[int, dict[str, Any] | None]:
    """POST ``body`` as JSON; returns ``(status, parsed_json_or_None)``.

    Connection-level failures raise ``NetworkError``; HTTP error statuses are
    returned for the caller to judge.
    """

    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError("missing hostname")
    if parsed.scheme == "https":
        conn: HTTPConnection = HTTPSConnection(
            parsed.hostname, parsed.port or 443, timeout=timeout_s
        )
    else:
        conn = HTTPConnection(parsed.hostname, parsed.port or 80, timeout=timeout_s)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    body_bytes = json.dumps(body, ensure_ascii=False).encode("utf-8")
    request_headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Content-Length": str(len(body_bytes)),
    }
    if headers:
        request_headers.update(headers)
    payload: Any = None
    try:
        conn.request("POST", path, body=body_bytes, headers=request_headers)
        resp = conn.getresponse()
        status = int(resp.status)
        raw = resp.read()
    except (OSError, HTTPException) as exc:
        raise NetworkError(f"POST {url} failed: {exc}") from exc
    finally:
        conn.close()
    if raw:
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            snippet = raw[:240].decode("utf-8", errors="replace").strip()
            payload = {
                "error": f"non_json_response: {snippet}" if snippet else "non_json_response"
            }
    if payload is None:
        return status, None
    if isinstance(payload, dict):
        return status, payload
    return status, {"error": f"unexpected_json_type: {type(payload).__name__}"}
