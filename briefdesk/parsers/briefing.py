from __future__ import annotations

import json
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from briefdesk.models import AgentBriefing, BriefingPayload


_ENVELOPE_KEYS = ("payload", "callbackUrl", "meta")
_LEADING_FENCE_RE = re.compile(r"^```(?:json)?", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"```$")
_FENCED_BLOCK_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_SUBJECT_PLACEHOLDERS = {"no detectado"}


def strip_code_fence(text: str) -> str:
    """
    Remove a Markdown code fence wrapping the whole text (```json ... ``` or ``` ... ```).
    Text without a leading fence is only trimmed.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _LEADING_FENCE_RE.sub("", cleaned, count=1)
        cleaned = _TRAILING_FENCE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name} is not valid JSON")


def loads_json(text: str) -> Any:
    """
    json.loads that rejects the NaN / Infinity / -Infinity extension.
    """
    return json.loads(text, parse_constant=_reject_constant)


def parse_json_text(text: str) -> Tuple[Any, Optional[str]]:
    """
    Fence-strip + json.loads. Returns (value, None) on success and (None, error) on failure.
    """
    try:
        return loads_json(strip_code_fence(text)), None
    except (ValueError, RecursionError) as e:
        return None, f"{type(e).__name__}: {e}"


def _is_envelope(candidate: Mapping[str, Any]) -> bool:
    return any(k in candidate for k in _ENVELOPE_KEYS)


def _coerce_envelope(raw: Any, *, depth: int) -> Optional[Dict[str, Any]]:
    if depth <= 0 or raw is None:
        return None
    if isinstance(raw, list):
        # Some agents wrap the response in a singleton array.
        return _coerce_envelope(raw[0], depth=depth - 1) if raw else None
    if isinstance(raw, str):
        parsed, _err = parse_json_text(raw)
        return _coerce_envelope(parsed, depth=depth - 1)
    if isinstance(raw, dict):
        if not _is_envelope(raw):
            return None
        callback_url = raw.get("callbackUrl")
        return {
            "callbackUrl": callback_url if isinstance(callback_url, str) else None,
            "meta": raw.get("meta"),
            "payload": raw["payload"] if "payload" in raw else raw,
        }
    return None


def _unwrap_payload(payload: Any, *, depth: int) -> Any:
    # Doubly-wrapped responses: the payload itself may be an array or a JSON string.
    while depth > 0 and isinstance(payload, (list, str)):
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        else:
            payload, _err = parse_json_text(payload)
        depth -= 1
    return payload


def normalize_webhook_payload(raw: Any, *, max_depth: int = 8) -> Optional[AgentBriefing]:
    """
    Turn an arbitrary agent callback body into an AgentBriefing, or None when it is not recognizable.

    Accepted shapes (any nesting of):
    - {"payload": {...}, "callbackUrl": "...", "meta": {...}}
    - an object carrying only `callbackUrl`/`meta` (the object itself is the payload)
    - [envelope]
    - a JSON string of the above, optionally fenced in ```json ... ```

    Never raises.
    """
    if raw is None:
        return None
    envelope = _coerce_envelope(raw, depth=max_depth)
    if envelope is None:
        return None
    payload = _unwrap_payload(envelope["payload"], depth=max_depth)
    if not isinstance(payload, dict):
        return None
    return AgentBriefing(callback_url=envelope["callbackUrl"], meta=envelope["meta"], payload=payload)


def _as_mapping(payload: BriefingPayload | Mapping[str, Any] | None) -> Mapping[str, Any]:
    if payload is None:
        return {}
    if isinstance(payload, BriefingPayload):
        return payload.model_dump(by_alias=True)
    return payload


def _dig(obj: Any, *keys: str) -> Any:
    for k in keys:
        if not isinstance(obj, Mapping):
            return None
        obj = obj.get(k)
    return obj


def _sanitize_subject(subject: Any) -> Optional[str]:
    if not isinstance(subject, str):
        return None
    trimmed = subject.strip()
    if not trimmed or trimmed.lower() in _SUBJECT_PLACEHOLDERS:
        return None
    return trimmed


def extract_primary_subject(payload: BriefingPayload | Mapping[str, Any] | None) -> Optional[str]:
    data = _as_mapping(payload)
    return _sanitize_subject(_dig(data, "profile", "metadata", "subject")) or _sanitize_subject(
        _dig(data, "social_opinion", "metadata", "subject")
    )


def extract_primary_biography(payload: BriefingPayload | Mapping[str, Any] | None) -> Optional[str]:
    data = _as_mapping(payload)
    for bio in (_dig(data, "profile", "summary", "biography"), _dig(data, "profile", "biography")):
        if isinstance(bio, str):
            return bio
    return None


# ---------- Legacy agent shape ----------


def _unwrap_legacy_text(value: str) -> Optional[Dict[str, Any]]:
    m = _FENCED_BLOCK_RE.search(value)
    text = m.group(1) if m else value.replace("```", "")
    try:
        parsed = loads_json(text)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _parse_legacy_item(item: Any) -> Optional[Dict[str, Any]]:
    if isinstance(item, dict) and "output" in item:
        output = item.get("output")
        if isinstance(output, str):
            return _unwrap_legacy_text(output)
    if isinstance(item, str):
        return _unwrap_legacy_text(item)
    if isinstance(item, dict):
        return item
    return None


def extract_report_from_agent_payload(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Older agent workflows answered with `[{"output": "```json {...} ```"}]` instead of an envelope.
    The first list item that parses wins.
    """
    if not raw:
        return None
    if isinstance(raw, list):
        for item in raw:
            parsed = _parse_legacy_item(item)
            if parsed is not None:
                return parsed
        return None
    return _parse_legacy_item(raw)


def _is_legacy_shape(raw: Any) -> bool:
    items = raw if isinstance(raw, list) else [raw]
    return any(isinstance(item, dict) and isinstance(item.get("output"), str) for item in items)


def resolve_briefing(raw: Any, *, max_depth: int = 8) -> Optional[AgentBriefing]:
    """
    Envelope first; when that fails, an `output`-wrapped legacy answer (object, list, or its JSON text)
    becomes a briefing with no callback URL or meta. Bare objects are still rejected.
    """
    briefing = normalize_webhook_payload(raw, max_depth=max_depth)
    if briefing is not None:
        return briefing
    if isinstance(raw, str):
        raw, _err = parse_json_text(raw)
    if not _is_legacy_shape(raw):
        return None
    report = extract_report_from_agent_payload(raw)
    return AgentBriefing(payload=report) if report is not None else None
