from __future__ import annotations

import json
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class AuditRecord:
    event_type: str
    correlation_id: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    actor: str = "briefdesk"
    ts: str = field(default_factory=_utc_ts)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_line(cls, line: str) -> Optional["AuditRecord"]:
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            return None
        if not isinstance(obj, dict) or not isinstance(obj.get("event_type"), str):
            return None
        payload = obj.get("payload")
        return cls(
            event_type=obj["event_type"],
            correlation_id=str(obj.get("correlation_id") or ""),
            payload=payload if isinstance(payload, dict) else {},
            actor=str(obj.get("actor") or ""),
            ts=str(obj.get("ts") or ""),
        )


class AuditLogger:
    """
    Append-only JSONL decision log: ingest accepted / rejected / unauthorized, dispatch outcomes.
    Write failures are swallowed so the trail never fails a request.
    """

    def __init__(self, path: str):
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def new_correlation_id(self) -> str:
        return uuid.uuid4().hex

    def write(self, correlation_id: str, event_type: str, payload: Dict[str, Any]) -> AuditRecord:
        record = AuditRecord(event_type=event_type, correlation_id=correlation_id, payload=payload)
        line = json.dumps(record.to_dict(), ensure_ascii=False, default=str)
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:
            pass
        return record


def tail_jsonl(path: str, *, max_lines: int = 200, event_prefix: Optional[str] = None) -> List[AuditRecord]:
    """
    Last `max_lines` lines of the log as records, oldest first. Unparseable lines are skipped;
    `event_prefix` (e.g. "dispatch.") filters by event type after the tail is taken.
    """
    if not os.path.exists(path) or max_lines <= 0:
        return []
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        lines = f.read().splitlines()[-max_lines:]
    records = [r for r in (AuditRecord.from_line(ln) for ln in lines) if r is not None]
    if event_prefix:
        records = [r for r in records if r.event_type.startswith(event_prefix)]
    return records
