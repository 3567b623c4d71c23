from __future__ import annotations

import json

import pytest

from briefdesk.models import BriefingPayload
from briefdesk.parsers.briefing import (
    extract_primary_biography,
    extract_primary_subject,
    extract_report_from_agent_payload,
    loads_json,
    normalize_webhook_payload,
    parse_json_text,
    resolve_briefing,
    strip_code_fence,
)


ENVELOPE = {
    "callbackUrl": "https://dash.example/api/results",
    "meta": {"requestedAt": "2025-12-01T10:00:00Z", "ui": "Briefdesk Investigator"},
    "payload": {"profile": {"metadata": {"subject": "Juan Ríos"}}, "missing_data": ["assets"]},
}


@pytest.mark.parametrize(
    "raw",
    [
        ENVELOPE,
        [ENVELOPE],
        json.dumps(ENVELOPE),
        "```json\n" + json.dumps(ENVELOPE) + "\n```",
        "```JSON\n" + json.dumps(ENVELOPE) + "\n```",
        "```\n" + json.dumps(ENVELOPE) + "\n```",
        [json.dumps(ENVELOPE)],
    ],
)
def test_normalize_accepts_envelope_shapes(raw) -> None:
    b = normalize_webhook_payload(raw)
    assert b is not None
    assert b.callback_url == ENVELOPE["callbackUrl"]
    assert b.meta == ENVELOPE["meta"]
    assert b.payload == ENVELOPE["payload"]


def test_normalize_is_idempotent_on_its_serialized_form() -> None:
    b = normalize_webhook_payload(ENVELOPE)
    assert b is not None
    again = normalize_webhook_payload(json.dumps(b.to_wire()))
    assert again == b
    assert normalize_webhook_payload(b.to_wire()) == b


def test_normalize_rejects_missing_input() -> None:
    assert normalize_webhook_payload(None) is None
    assert normalize_webhook_payload([]) is None
    assert normalize_webhook_payload("") is None


@pytest.mark.parametrize("payload", [1, 0, 3.5, True, False, "", "null", [], None])
def test_normalize_rejects_non_object_final_payload(payload) -> None:
    assert normalize_webhook_payload({"payload": payload}) is None


def test_normalize_rejects_objects_without_envelope_keys() -> None:
    assert normalize_webhook_payload({}) is None
    assert normalize_webhook_payload({"profile": {"metadata": {"subject": "X"}}}) is None


def test_normalize_rejects_malformed_json_text() -> None:
    assert normalize_webhook_payload("not json at all") is None
    assert normalize_webhook_payload("```json\n{\"payload\": \n```") is None
    assert normalize_webhook_payload('"just a string"') is None


def test_normalize_fenced_empty_payload() -> None:
    b = normalize_webhook_payload("```json\n{\"payload\":{}}\n```")
    assert b is not None
    assert b.payload == {}
    assert b.callback_url is None
    assert b.meta is None
    assert b.to_wire() == {"payload": {}}


def test_normalize_whole_object_is_payload_when_only_callback_or_meta() -> None:
    raw = {"callbackUrl": "https://x/api/results", "profile": {"biography": "bio"}}
    b = normalize_webhook_payload(raw)
    assert b is not None
    assert b.callback_url == "https://x/api/results"
    assert b.payload == raw


def test_normalize_drops_non_string_callback_url_and_keeps_meta_as_is() -> None:
    b = normalize_webhook_payload({"callbackUrl": 42, "meta": ["odd"], "payload": {}})
    assert b is not None
    assert b.callback_url is None
    assert b.meta == ["odd"]


def test_normalize_unwraps_doubly_wrapped_payload() -> None:
    inner = {"narrative_summary": "ok"}
    assert normalize_webhook_payload({"payload": [inner]}).payload == inner
    assert normalize_webhook_payload({"payload": json.dumps(inner)}).payload == inner
    fenced = "```json\n" + json.dumps(inner) + "\n```"
    assert normalize_webhook_payload({"payload": [fenced]}).payload == inner
    assert normalize_webhook_payload([{"payload": json.dumps([inner])}]).payload == inner


def test_normalize_bounds_recursion() -> None:
    raw = {"payload": {}}
    for _ in range(20):
        raw = [raw]
    assert normalize_webhook_payload(raw) is None
    assert normalize_webhook_payload(raw, max_depth=30) is not None


def test_strip_code_fence() -> None:
    assert strip_code_fence("  ```json\n{}\n```  ") == "{}"
    assert strip_code_fence("{\"a\": 1}") == "{\"a\": 1}"


def test_extract_primary_subject_prefers_profile_and_skips_placeholders() -> None:
    assert extract_primary_subject({"profile": {"metadata": {"subject": "  Ana Pérez "}}}) == "Ana Pérez"
    payload = {
        "profile": {"metadata": {"subject": "No Detectado"}},
        "social_opinion": {"metadata": {"subject": "Juan Ríos"}},
    }
    assert extract_primary_subject(payload) == "Juan Ríos"
    assert extract_primary_subject({"profile": {"metadata": {"subject": "   "}}}) is None
    assert extract_primary_subject({"profile": {"metadata": {"subject": 7}}}) is None
    assert extract_primary_subject({}) is None


def test_extract_primary_subject_accepts_typed_payload() -> None:
    typed = BriefingPayload.coerce({"social_opinion": {"metadata": {"subject": "Ana"}}})
    assert extract_primary_subject(typed) == "Ana"


def test_extract_primary_biography_falls_back_to_profile_biography() -> None:
    assert extract_primary_biography({"profile": {"summary": {"biography": "A"}, "biography": "B"}}) == "A"
    assert extract_primary_biography({"profile": {"biography": "B"}}) == "B"
    assert extract_primary_biography({"profile": {}}) is None


def test_legacy_extractor_handles_output_wrapper() -> None:
    report = {"narrative_summary": "legacy"}
    wrapped = [{"output": "Here you go:\n```json\n" + json.dumps(report) + "\n```\nthanks"}]
    assert extract_report_from_agent_payload(wrapped) == report
    assert extract_report_from_agent_payload({"output": json.dumps(report)}) == report


def test_legacy_extractor_first_parsable_item_wins() -> None:
    items = [{"output": "garbage"}, "```" + json.dumps({"a": 1}) + "```", {"b": 2}]
    assert extract_report_from_agent_payload(items) == {"a": 1}
    assert extract_report_from_agent_payload([1, 2]) is None
    assert extract_report_from_agent_payload(None) is None
    assert extract_report_from_agent_payload({"plain": True}) == {"plain": True}


def test_resolve_briefing_prefers_envelope() -> None:
    b = resolve_briefing(ENVELOPE)
    assert b == normalize_webhook_payload(ENVELOPE)


def test_resolve_briefing_falls_back_to_output_wrapper() -> None:
    report = {"profile": {"metadata": {"subject": "Ana"}}}
    fenced = "```json\n" + json.dumps(report) + "\n```"
    for raw in ([{"output": fenced}], {"output": fenced}, json.dumps([{"output": fenced}])):
        b = resolve_briefing(raw)
        assert b is not None, raw
        assert b.payload == report
        assert b.callback_url is None and b.meta is None


def test_resolve_briefing_still_rejects_bare_objects() -> None:
    assert resolve_briefing({"profile": {}}) is None
    assert resolve_briefing([{"profile": {}}]) is None
    assert resolve_briefing([{"output": "garbage"}]) is None
    assert resolve_briefing("not json") is None


def test_non_finite_numbers_are_not_json() -> None:
    with pytest.raises(ValueError):
        loads_json('{"x": NaN}')
    value, err = parse_json_text('```json\n{"x": Infinity}\n```')
    assert value is None and "non-finite" in err
    assert normalize_webhook_payload('{"payload": {"x": NaN}}') is None
    assert extract_report_from_agent_payload({"output": '{"x": -Infinity}'}) is None
