from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class ResultEntry(BaseModel):
    """
    One accepted agent callback, exactly as received.
    Wire format uses camelCase (`receivedAt`, `sourceIp`) because browser clients consume it directly.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    received_at: str = Field(default_factory=_utc_now_iso, alias="receivedAt")
    source_ip: Optional[str] = Field(default=None, alias="sourceIp")
    payload: Any = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------- Briefing report (typed views, every field optional) ----------


class _Lenient(BaseModel):
    # Upstream agent output is non-deterministic; the schema is advisory.
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class BriefingPosition(_Lenient):
    role: Optional[str] = None
    org: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None


class BriefingProfileMetadata(_Lenient):
    subject: Optional[str] = None
    data_source: Optional[str] = None
    political_party: Optional[str] = None
    country: Optional[str] = None


class BriefingProfileSummary(_Lenient):
    biography: Optional[str] = None
    current_position: Optional[BriefingPosition] = None
    previous_positions: List[BriefingPosition] = Field(default_factory=list)
    political_party: Optional[str] = None


class BriefingPositions(_Lenient):
    current: Optional[BriefingPosition] = None
    previous: List[BriefingPosition] = Field(default_factory=list)


class BriefingNewsEntry(_Lenient):
    date: Optional[str] = None
    headline: Optional[str] = None
    source_name: Optional[str] = None
    source_url: Optional[str] = None
    sentiment: Optional[str] = None
    snippet: Optional[str] = None


class BriefingControversy(_Lenient):
    topic: Optional[str] = None
    context: Optional[str] = None
    source_url: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)


class BriefingProfile(_Lenient):
    metadata: Optional[BriefingProfileMetadata] = None
    summary: Optional[BriefingProfileSummary] = None
    positions: Optional[BriefingPositions] = None
    biography: Optional[str] = None
    relevant_news: List[BriefingNewsEntry] = Field(default_factory=list)
    controversies: List[BriefingControversy] = Field(default_factory=list)


class BriefingRecurringTopic(_Lenient):
    topic: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)


class BriefingReputationalRisk(_Lenient):
    risk: Optional[str] = None
    rationale: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)


class BriefingMediaEvent(_Lenient):
    date: Optional[str] = None
    title: Optional[str] = None
    impact: Optional[str] = None
    outlet: Optional[str] = None


class BriefingMediaInfluence(_Lenient):
    media_positioning: Optional[str] = None
    recurring_topics: List[BriefingRecurringTopic] = Field(default_factory=list)
    reputational_risks_media: List[BriefingReputationalRisk] = Field(default_factory=list)
    key_media_events: List[BriefingMediaEvent] = Field(default_factory=list)
    sectors_with_presence: List[str] = Field(default_factory=list)


class BriefingThemeEvidence(_Lenient):
    quote_or_paraphrase: Optional[str] = None
    source: Optional[str] = None


class BriefingKeyTheme(_Lenient):
    theme: Optional[str] = None
    subthemes: List[str] = Field(default_factory=list)
    why_it_matters: Optional[str] = None
    evidence: List[BriefingThemeEvidence] = Field(default_factory=list)


class BriefingTypicalExpression(_Lenient):
    excerpt: Optional[str] = None


class BriefingAudienceArchetype(_Lenient):
    label: Optional[str] = None
    motivation: Optional[str] = None
    typical_expression: Optional[BriefingTypicalExpression] = None


class BriefingSocialControversy(_Lenient):
    topic: Optional[str] = None
    evidence: List[BriefingThemeEvidence] = Field(default_factory=list)


class BriefingSocialMetadata(_Lenient):
    subject: Optional[str] = None


class BriefingSocialOpinion(_Lenient):
    metadata: Optional[BriefingSocialMetadata] = None
    general_narrative: Optional[str] = None
    key_themes: List[BriefingKeyTheme] = Field(default_factory=list)
    predominant_emotions: List[str] = Field(default_factory=list)
    audience_archetypes: List[BriefingAudienceArchetype] = Field(default_factory=list)
    social_controversies: List[BriefingSocialControversy] = Field(default_factory=list)


class BriefingRiskOpportunity(_Lenient):
    title: Optional[str] = None
    rationale: Optional[str] = None
    evidence_ids: List[str] = Field(default_factory=list)


class BriefingRisksOpportunities(_Lenient):
    media_risks: List[BriefingRiskOpportunity] = Field(default_factory=list)
    social_risks: List[BriefingRiskOpportunity] = Field(default_factory=list)
    press_opportunities: List[BriefingRiskOpportunity] = Field(default_factory=list)
    audience_opportunities: List[BriefingRiskOpportunity] = Field(default_factory=list)


class BriefingPayload(_Lenient):
    """
    Substantive investigation report produced by the remote agent.
    Build with `BriefingPayload.coerce(...)` when the input is untrusted: it drops invalid sections
    instead of rejecting the whole report.
    """

    profile: Optional[BriefingProfile] = None
    media_influence: Optional[BriefingMediaInfluence] = None
    social_opinion: Optional[BriefingSocialOpinion] = None
    risks_opportunities: Optional[BriefingRisksOpportunities] = None
    narrative_summary: Optional[str] = None
    recommended_strategy: Optional[str] = None
    missing_data: List[str] = Field(default_factory=list)

    @classmethod
    def coerce(cls, raw: Dict[str, Any]) -> "BriefingPayload":
        try:
            return cls.model_validate(raw)
        except ValidationError:
            pass
        kept: Dict[str, Any] = {}
        for key, value in raw.items():
            try:
                cls.model_validate({key: value})
            except ValidationError:
                continue
            kept[key] = value
        return cls.model_validate(kept)


class BriefingMeta(_Lenient):
    requested_at: Optional[str] = Field(default=None, alias="requestedAt")
    ui: Optional[str] = None
    source_webhook_url: Optional[str] = Field(default=None, alias="sourceWebhookUrl")


class AgentBriefing(BaseModel):
    """
    Canonical envelope extracted from an agent callback.
    `payload` is always a JSON object; `meta` is passed through untouched.
    """

    model_config = ConfigDict(populate_by_name=True)

    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")
    meta: Any = None
    payload: Dict[str, Any]

    def report(self) -> BriefingPayload:
        return BriefingPayload.coerce(self.payload)

    def typed_meta(self) -> Optional[BriefingMeta]:
        if not isinstance(self.meta, dict):
            return None
        try:
            return BriefingMeta.model_validate(self.meta)
        except ValidationError:
            return None

    def to_wire(self) -> Dict[str, Any]:
        # Only envelope-level None values are omitted; the payload is emitted verbatim.
        out: Dict[str, Any] = {}
        if self.callback_url is not None:
            out["callbackUrl"] = self.callback_url
        if self.meta is not None:
            out["meta"] = self.meta
        out["payload"] = self.payload
        return out


# ---------- Dispatch ----------


class DispatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    form: Dict[str, str]
    entry_webhook: Optional[str] = Field(default=None, alias="entryWebhook")
    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")
