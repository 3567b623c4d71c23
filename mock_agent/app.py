from __future__ import annotations

import hashlib
import json
import os
from typing import Any, Dict, Optional

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse


app = FastAPI(title="Briefdesk Mock Agent", version="0.1.0")

SHAPES = ["envelope", "array", "string", "fenced", "legacy_output", "malformed"]


def _stable_int(seed: str) -> int:
    h = hashlib.sha256(seed.encode("utf-8")).hexdigest()
    return int(h[:8], 16)


def sample_report(subject: str) -> Dict[str, Any]:
    n = _stable_int(subject)
    return {
        "profile": {
            "metadata": {"subject": subject, "data_source": "mock-agent", "country": "República Dominicana"},
            "summary": {
                "biography": f"{subject} is a public figure with {n % 20 + 5} years of public service.",
                "current_position": {"role": "Senador", "org": "Senado", "from": "2020"},
            },
            "relevant_news": [
                {
                    "date": "2025-11-02",
                    "headline": f"{subject} presents a new transparency bill",
                    "source_name": "Diario Libre",
                    "sentiment": ["positivo", "neutro", "negativo"][n % 3],
                }
            ],
        },
        "media_influence": {
            "media_positioning": "Frequent presence in national press.",
            "recurring_topics": [{"topic": "transparency", "evidence": ["n1"]}],
            "sectors_with_presence": ["politics", "energy"],
        },
        "social_opinion": {
            "metadata": {"subject": subject},
            "general_narrative": "Mixed reception on social networks.",
            "predominant_emotions": ["trust", "skepticism"],
        },
        "risks_opportunities": {
            "media_risks": [{"title": "Campaign finance questions", "rationale": "Open inquiry", "evidence_ids": ["n1"]}],
            "press_opportunities": [{"title": "Transparency agenda", "evidence_ids": ["n1"]}],
        },
        "narrative_summary": f"{subject} keeps a stable public profile.",
        "recommended_strategy": "Lead with the transparency agenda.",
        "missing_data": ["asset declarations"],
    }


def build_callback_body(*, subject: str, shape: str, callback_url: Optional[str] = None) -> Any:
    """
    A callback body in one of the shapes the agent workflows have produced over time.
    """
    report = sample_report(subject)
    envelope: Dict[str, Any] = {"payload": report, "meta": {"ui": "mock-agent"}}
    if callback_url:
        envelope["callbackUrl"] = callback_url
    if shape == "envelope":
        return envelope
    if shape == "array":
        return [envelope]
    if shape == "string":
        return json.dumps(envelope, ensure_ascii=False)
    if shape == "fenced":
        return "```json\n" + json.dumps(envelope, ensure_ascii=False) + "\n```"
    if shape == "legacy_output":
        return [{"output": "```json\n" + json.dumps(report, ensure_ascii=False) + "\n```"}]
    if shape == "malformed":
        return "the agent ran out of tokens before finishing the {report"
    raise ValueError(f"unknown shape: {shape}")


def _pick_shape(shape: str, subject: str) -> str:
    if shape != "auto":
        return shape
    seed_str = os.getenv("MOCK_AGENT_SEED", "seed")
    # Only shapes ingestion accepts (everything but `malformed`).
    return SHAPES[_stable_int(f"{seed_str}:{subject}") % 5]


@app.get("/briefing")
def briefing(
    subject: str = Query("Juan Ríos"),
    shape: str = Query("auto"),
) -> Any:
    """
    Deterministic sample callback body. Shapes:
      - envelope / array / string / fenced (accepted by the envelope normalizer)
      - legacy_output (older `[{"output": "```json ...```"}]` agent answer, accepted via the legacy fallback)
      - malformed (truncated text)
      - auto (deterministically pick an accepted shape from `subject`)
    """
    picked = _pick_shape(shape, subject)
    if picked not in SHAPES:
        raise HTTPException(status_code=400, detail={"error": "unknown_shape", "shape": shape})
    body = build_callback_body(subject=subject, shape=picked)
    if isinstance(body, str):
        return PlainTextResponse(body)
    return JSONResponse(body)


def _deliver(callback_url: str, body: Any, secret: Optional[str]) -> None:
    headers = {"x-webhook-secret": secret} if secret else {}
    content = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False)
    try:
        with httpx.Client(timeout=10.0) as client:
            client.post(callback_url, content=content.encode("utf-8"), headers=headers)
    except httpx.HTTPError:
        # Best-effort, like the real agent.
        return


@app.post("/webhook")
async def webhook(request: Request, background: BackgroundTasks) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "invalid_json"})
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail={"error": "invalid_body"})
    requests_ = body.get("request")
    form = requests_[0] if isinstance(requests_, list) and requests_ else {}
    form = form if isinstance(form, dict) else {}
    subject = str(form.get("Nombre de la persona") or "Sujeto")
    callback_url = body.get("callbackUrl")
    if not isinstance(callback_url, str) or not callback_url:
        raise HTTPException(status_code=400, detail={"error": "callback_url_missing"})
    shape = _pick_shape(str(request.query_params.get("shape") or "auto"), subject)
    if shape not in SHAPES:
        raise HTTPException(status_code=400, detail={"error": "unknown_shape", "shape": shape})
    background.add_task(
        _deliver,
        callback_url,
        build_callback_body(subject=subject, shape=shape, callback_url=callback_url),
        os.getenv("MOCK_AGENT_WEBHOOK_SECRET"),
    )
    return {"accepted": True, "subject": subject, "shape": shape}


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True}
