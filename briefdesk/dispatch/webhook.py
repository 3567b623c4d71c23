from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urljoin

import httpx


RESULTS_PATH = "/api/results"


@dataclass(frozen=True)
class DispatchOutcome:
    ok: bool
    status_code: int
    body: Any


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_callback_url(
    *,
    override: Optional[str],
    headers: Mapping[str, str],
    fallback: str,
) -> str:
    """
    Where the remote agent should POST its result:
    explicit override, else <origin|referer|x-forwarded-host>/api/results, else `fallback`.
    """
    explicit = _clean(override)
    if explicit:
        return explicit
    origin = _clean(headers.get("origin")) or _clean(headers.get("referer")) or _clean(headers.get("x-forwarded-host"))
    if origin:
        base = origin if origin.startswith("http") else f"https://{origin}"
        return urljoin(base, RESULTS_PATH)
    return fallback


def build_dispatch_body(*, form: Dict[str, str], callback_url: str, ui_tag: str) -> Dict[str, Any]:
    return {
        "request": [form],
        "callbackUrl": callback_url,
        "requestedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "ui": ui_tag,
    }


def _parse_body(text: str) -> Any:
    # Remote webhooks may answer with plain text.
    try:
        return json.loads(text)
    except ValueError:
        return text


class WebhookDispatcher:
    """
    Single forwarding call to the automation webhook. No retries: the operator resubmits.
    `transport` is for tests (httpx.MockTransport).
    """

    def __init__(self, *, timeout_s: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.timeout_s = float(timeout_s)
        self._transport = transport

    async def forward(self, *, url: str, body: Dict[str, Any]) -> DispatchOutcome:
        """
        Raises httpx.HTTPError on transport failures; non-2xx answers are returned, not raised.
        """
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            r = await client.post(url, json=body, headers={"Content-Type": "application/json"})
        return DispatchOutcome(ok=r.is_success, status_code=r.status_code, body=_parse_body(r.text))
