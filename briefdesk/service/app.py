from __future__ import annotations

import hmac
from typing import Any, Dict, Optional, Tuple

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.responses import StreamingResponse

from briefdesk.dispatch.webhook import WebhookDispatcher, build_dispatch_body, resolve_callback_url
from briefdesk.models import AgentBriefing, DispatchRequest, ResultEntry
from briefdesk.parsers.briefing import (
    extract_primary_biography,
    extract_primary_subject,
    loads_json,
    resolve_briefing,
)
from briefdesk.reports.render import render_briefing_md
from briefdesk.service.stream import SSE_HEADERS, encode_entry, stream_results_sse
from briefdesk.settings import Settings
from briefdesk.store.results import ResultStore
from briefdesk.telemetry.audit import AuditLogger, tail_jsonl


VERSION = "0.1.0"


def create_app(
    settings: Settings | None = None,
    *,
    store: ResultStore | None = None,
    dispatcher: WebhookDispatcher | None = None,
) -> FastAPI:
    """
    App factory used by uvicorn and tests.

    Routes are registered on the module-level `app` via decorators, so a second call returns that same
    app with updated state. The result store survives re-creation (one store per process) unless a
    store is passed explicitly.
    """
    s = settings or Settings()
    existing = globals().get("app")
    target = existing if isinstance(existing, FastAPI) else FastAPI(title="Briefdesk", version=VERSION)
    target.state.settings = s
    if store is not None:
        target.state.result_store = store
    elif not isinstance(getattr(target.state, "result_store", None), ResultStore):
        target.state.result_store = ResultStore(max_entries=s.results_max_entries)
    # Dispatcher is stateless: rebuild it so it always follows the current settings.
    target.state.dispatcher = dispatcher or WebhookDispatcher(timeout_s=s.dispatch_timeout_s)
    return target


app = create_app()


def _store(request: Request) -> ResultStore:
    return request.app.state.result_store


def _audit(request: Request) -> AuditLogger | None:
    settings: Settings = request.app.state.settings
    try:
        return AuditLogger(settings.audit_log_path)
    except OSError:
        return None


def _audit_write(audit: AuditLogger | None, correlation_id: str, event_type: str, payload: Dict[str, Any]) -> None:
    if audit is not None:
        audit.write(correlation_id, event_type, payload)


def extract_source_ip(request: Request) -> Optional[str]:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return None


def decode_callback_body(raw: bytes) -> Tuple[Any, Optional[str]]:
    """
    JSON body when it parses; otherwise the decoded text plus the parser error.
    Text bodies still get a chance to normalize (agents sometimes post fenced JSON as text/plain).
    """
    text = raw.decode("utf-8", errors="replace")
    try:
        return loads_json(text), None
    except (ValueError, RecursionError) as e:
        return text, f"{type(e).__name__}: {e}"


def _secret_ok(incoming: Optional[str], expected: str) -> bool:
    return hmac.compare_digest((incoming or "").encode("utf-8"), expected.encode("utf-8"))


@app.get("/health")
def health(request: Request) -> Dict[str, Any]:
    return {"ok": True, "version": VERSION}


# ---------- Agent callbacks ----------


@app.post("/api/results")
async def results_ingest(request: Request) -> JSONResponse:
    settings: Settings = request.app.state.settings
    audit = _audit(request)
    correlation_id = audit.new_correlation_id() if audit is not None else ""
    source_ip = extract_source_ip(request)

    token = settings.result_webhook_token
    if token and not _secret_ok(request.headers.get("x-webhook-secret"), token):
        _audit_write(audit, correlation_id, "result.unauthorized", {"source_ip": source_ip})
        return JSONResponse({"error": "invalid x-webhook-secret header"}, status_code=401)

    payload, parser_error = decode_callback_body(await request.body())
    # Strict policy: only callbacks that resolve into a briefing are stored.
    briefing = resolve_briefing(payload)
    if briefing is None:
        return _reject(
            audit, correlation_id, source_ip, payload, parser_error, "payload is not a recognizable briefing"
        )
    # Snapshot and stream readers assume every stored entry serializes.
    if encode_entry(ResultEntry(source_ip=source_ip, payload=payload)) is None:
        return _reject(
            audit, correlation_id, source_ip, payload, "payload cannot be serialized", "payload cannot be stored"
        )

    entry = _store(request).add_result(payload, source_ip=source_ip)
    _audit_write(
        audit,
        correlation_id,
        "result.accepted",
        {"entry_id": entry.id, "source_ip": source_ip, "subject": extract_primary_subject(briefing.payload)},
    )
    return JSONResponse({"ok": True, "entryId": entry.id})


def _reject(
    audit: AuditLogger | None,
    correlation_id: str,
    source_ip: Optional[str],
    payload: Any,
    parser_error: Optional[str],
    message: str,
) -> JSONResponse:
    _audit_write(
        audit,
        correlation_id,
        "result.rejected",
        {"source_ip": source_ip, "parser_error": parser_error, "body_type": type(payload).__name__},
    )
    return JSONResponse({"error": message, "parserError": parser_error}, status_code=400)


def _wire_or_none(entry: ResultEntry) -> Optional[Dict[str, Any]]:
    try:
        return entry.to_wire()
    except (TypeError, ValueError, RecursionError):
        return None


@app.get("/api/results")
def results_snapshot(request: Request) -> JSONResponse:
    wired = (_wire_or_none(e) for e in _store(request).get_results())
    return JSONResponse({"results": [w for w in wired if w is not None]})


@app.get("/api/results/stream")
async def results_stream(request: Request) -> StreamingResponse:
    settings: Settings = request.app.state.settings
    return StreamingResponse(
        stream_results_sse(
            _store(request),
            heartbeat_interval_s=settings.stream_heartbeat_interval_s,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def _entry_or_404(request: Request, entry_id: str) -> ResultEntry:
    entry = _store(request).get_result(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="result not found")
    return entry


def _briefing_or_422(entry: ResultEntry) -> AgentBriefing:
    briefing = resolve_briefing(entry.payload)
    if briefing is None:
        raise HTTPException(status_code=422, detail="stored payload is not a recognizable briefing")
    return briefing


@app.get("/api/results/{entry_id}.md")
def result_report_md(request: Request, entry_id: str) -> PlainTextResponse:
    entry = _entry_or_404(request, entry_id)
    md = render_briefing_md(briefing=_briefing_or_422(entry), entry=entry)
    return PlainTextResponse(md, media_type="text/markdown")


@app.get("/api/results/{entry_id}/briefing")
def result_briefing(request: Request, entry_id: str) -> JSONResponse:
    entry = _entry_or_404(request, entry_id)
    briefing = _briefing_or_422(entry)
    return JSONResponse(
        {
            "entryId": entry.id,
            "subject": extract_primary_subject(briefing.payload),
            "biography": extract_primary_biography(briefing.payload),
            "briefing": briefing.to_wire(),
        }
    )


@app.get("/api/results/{entry_id}")
def result_get(request: Request, entry_id: str) -> JSONResponse:
    wired = _wire_or_none(_entry_or_404(request, entry_id))
    if wired is None:
        raise HTTPException(status_code=422, detail="stored payload cannot be serialized")
    return JSONResponse(wired)


# ---------- Operator dispatch ----------


@app.post("/api/dispatch")
async def dispatch(request: Request) -> JSONResponse:
    settings: Settings = request.app.state.settings
    dispatcher: WebhookDispatcher = request.app.state.dispatcher
    audit = _audit(request)
    correlation_id = audit.new_correlation_id() if audit is not None else ""

    try:
        body = await request.json()
    except (ValueError, RecursionError):
        body = None
    if not isinstance(body, dict) or not isinstance(body.get("form"), dict):
        return JSONResponse({"error": "no form data received"}, status_code=400)
    try:
        req = DispatchRequest.model_validate(body)
    except ValidationError as e:
        return JSONResponse({"error": "invalid form data", "details": str(e)}, status_code=400)

    entry_webhook = (req.entry_webhook or "").strip() or (settings.entry_webhook_url or "").strip()
    if not entry_webhook:
        return JSONResponse({"error": "no input webhook configured"}, status_code=500)

    callback_url = resolve_callback_url(
        override=req.callback_url,
        headers=request.headers,
        fallback=settings.results_callback_url,
    )
    proxy_body = build_dispatch_body(form=req.form, callback_url=callback_url, ui_tag=settings.dispatch_ui_tag)

    try:
        outcome = await dispatcher.forward(url=entry_webhook, body=proxy_body)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        _audit_write(audit, correlation_id, "dispatch.failed", {"webhook": entry_webhook, "error": str(e)})
        return JSONResponse(
            {"error": "could not reach the remote webhook", "details": f"{type(e).__name__}: {e}"},
            status_code=500,
        )

    if not outcome.ok:
        _audit_write(
            audit,
            correlation_id,
            "dispatch.remote_error",
            {"webhook": entry_webhook, "status": outcome.status_code},
        )
        return JSONResponse(
            {"error": "remote webhook returned an error", "status": outcome.status_code, "body": outcome.body},
            status_code=502,
        )

    _audit_write(
        audit,
        correlation_id,
        "dispatch.forwarded",
        {"webhook": entry_webhook, "callback_url": callback_url, "status": outcome.status_code},
    )
    return JSONResponse(
        {"ok": True, "forwardedTo": entry_webhook, "callbackUrl": callback_url, "response": outcome.body}
    )


@app.get("/api/audit/recent")
def audit_recent(request: Request, n: int = 200, event: Optional[str] = None) -> JSONResponse:
    settings: Settings = request.app.state.settings
    tail = tail_jsonl(settings.audit_log_path, max_lines=max(1, min(n, 2000)), event_prefix=event)
    records = [r.to_dict() for r in tail]
    return JSONResponse({"records": records})
