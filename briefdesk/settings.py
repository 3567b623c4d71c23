from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BRIEFDESK_", extra="ignore")

    # Outbound automation webhook the dispatch proxy forwards operator requests to.
    # No default: dispatch answers 500 until one is configured (or overridden per request).
    entry_webhook_url: str | None = None
    # Used when the callback URL cannot be derived from origin/referer/forwarded-host.
    results_callback_url: str = "http://localhost:8088/api/results"
    dispatch_timeout_s: float = Field(default=30.0, gt=0)
    dispatch_ui_tag: str = "Briefdesk Investigator"

    # Shared secret expected in the `x-webhook-secret` header of agent callbacks (optional).
    result_webhook_token: str | None = None

    # In-memory result buffer (newest-first, oldest evicted first).
    results_max_entries: int = Field(default=20, ge=1)

    # SSE keepalive cadence; keeps idle proxies from dropping the stream.
    stream_heartbeat_interval_s: float = Field(default=25.0, gt=0)

    audit_log_path: str = "var/audit/briefdesk_audit.jsonl"
