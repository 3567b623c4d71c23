from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from briefdesk.models import (
    AgentBriefing,
    BriefingPosition,
    BriefingRiskOpportunity,
    BriefingThemeEvidence,
    ResultEntry,
)
from briefdesk.parsers.briefing import extract_primary_biography, extract_primary_subject


SUBJECT_PLACEHOLDER = "Unidentified subject"
BIOGRAPHY_PLACEHOLDER = "No biography available."

_RISK_SECTIONS = (
    ("media_risks", "Media risks"),
    ("social_risks", "Social risks"),
    ("press_opportunities", "Press opportunities"),
    ("audience_opportunities", "Audience opportunities"),
)


def _position_line(p: Optional[BriefingPosition]) -> Optional[str]:
    if p is None:
        return None
    head = " @ ".join(x for x in (p.role, p.org) if x)
    if not head:
        return None
    span = " - ".join(x for x in (p.from_, p.to) if x)
    return f"{head} ({span})" if span else head


def _evidence_lines(items: List[BriefingThemeEvidence], *, indent: str = "  ") -> List[str]:
    out: List[str] = []
    for ev in items:
        if not ev.quote_or_paraphrase:
            continue
        src = f" ({ev.source})" if ev.source else ""
        out.append(f"{indent}- \"{ev.quote_or_paraphrase}\"{src}")
    return out


def _risk_lines(items: List[BriefingRiskOpportunity]) -> List[str]:
    out: List[str] = []
    for it in items:
        if not it.title:
            continue
        line = f"- **{it.title}**"
        if it.rationale:
            line += f": {it.rationale}"
        if it.evidence_ids:
            line += " [" + ", ".join(f"`{e}`" for e in it.evidence_ids) + "]"
        out.append(line)
    return out


def _section(lines: List[str], title: str, body: List[str]) -> None:
    if not body:
        return
    lines.append(f"## {title}")
    lines.append("")
    lines.extend(body)
    lines.append("")


def render_briefing_md(*, briefing: AgentBriefing, entry: Optional[ResultEntry] = None) -> str:
    """
    Render a normalized briefing as a markdown document for download / sharing.
    Empty sections are omitted; subject and biography fall back to placeholders.
    """
    report = briefing.report()
    subject = extract_primary_subject(briefing.payload) or SUBJECT_PLACEHOLDER
    biography = extract_primary_biography(briefing.payload) or BIOGRAPHY_PLACEHOLDER
    profile = report.profile

    lines: List[str] = []
    lines.append(f"# Briefing: {subject}")
    lines.append("")
    lines.append(f"- generated_at: `{datetime.now(timezone.utc).isoformat()}`")
    if entry is not None:
        lines.append(f"- entry_id: `{entry.id}`")
        lines.append(f"- received_at: `{entry.received_at}`")
    meta = briefing.typed_meta()
    if meta is not None and meta.requested_at:
        lines.append(f"- requested_at: `{meta.requested_at}`")
    if profile is not None and profile.metadata is not None:
        md = profile.metadata
        if md.political_party:
            lines.append(f"- political_party: {md.political_party}")
        if md.country:
            lines.append(f"- country: {md.country}")
        if md.data_source:
            lines.append(f"- data_source: {md.data_source}")
    lines.append("")

    lines.append("## Biography")
    lines.append("")
    lines.append(biography.strip())
    lines.append("")

    if report.narrative_summary:
        _section(lines, "Narrative summary", [report.narrative_summary.strip()])

    if profile is not None:
        positions: List[str] = []
        current = None
        previous: List[BriefingPosition] = []
        if profile.summary is not None:
            current = profile.summary.current_position
            previous = list(profile.summary.previous_positions)
        if profile.positions is not None:
            current = current or profile.positions.current
            previous = previous or list(profile.positions.previous)
        cur = _position_line(current)
        if cur:
            positions.append(f"- current: {cur}")
        for p in previous:
            line = _position_line(p)
            if line:
                positions.append(f"- previous: {line}")
        _section(lines, "Positions", positions)

        news: List[str] = []
        for n in profile.relevant_news:
            if not n.headline:
                continue
            parts = [x for x in (n.date, n.source_name, n.sentiment) if x]
            suffix = f" ({', '.join(parts)})" if parts else ""
            news.append(f"- {n.headline}{suffix}")
            if n.snippet:
                news.append(f"  > {n.snippet}")
        _section(lines, "Relevant news", news)

        controversies: List[str] = []
        for c in profile.controversies:
            label = c.topic or ", ".join(c.keywords)
            if not label:
                continue
            controversies.append(f"- **{label}**" + (f": {c.context}" if c.context else ""))
        _section(lines, "Controversies", controversies)

    mi = report.media_influence
    if mi is not None:
        media: List[str] = []
        if mi.media_positioning:
            media.append(mi.media_positioning.strip())
            media.append("")
        for t in mi.recurring_topics:
            if t.topic:
                media.append(f"- topic: {t.topic}")
        for r in mi.reputational_risks_media:
            if r.risk:
                media.append(f"- risk: {r.risk}" + (f" ({r.rationale})" if r.rationale else ""))
        for ev in mi.key_media_events:
            if ev.title:
                media.append(f"- event: {' '.join(x for x in (ev.date, ev.title) if x)}" + (f": {ev.impact}" if ev.impact else ""))
        if mi.sectors_with_presence:
            media.append("- sectors: " + ", ".join(mi.sectors_with_presence))
        _section(lines, "Media influence", media)

    so = report.social_opinion
    if so is not None:
        social: List[str] = []
        if so.general_narrative:
            social.append(so.general_narrative.strip())
            social.append("")
        for theme in so.key_themes:
            if not theme.theme:
                continue
            social.append(f"- **{theme.theme}**" + (f": {theme.why_it_matters}" if theme.why_it_matters else ""))
            social.extend(_evidence_lines(theme.evidence))
        if so.predominant_emotions:
            social.append("- emotions: " + ", ".join(so.predominant_emotions))
        for a in so.audience_archetypes:
            if a.label:
                social.append(f"- archetype: {a.label}" + (f" ({a.motivation})" if a.motivation else ""))
        for sc in so.social_controversies:
            if sc.topic:
                social.append(f"- controversy: {sc.topic}")
                social.extend(_evidence_lines(sc.evidence))
        _section(lines, "Social opinion", social)

    ro = report.risks_opportunities
    if ro is not None:
        for attr, title in _RISK_SECTIONS:
            _section(lines, title, _risk_lines(getattr(ro, attr)))

    if report.recommended_strategy:
        _section(lines, "Recommended strategy", [report.recommended_strategy.strip()])

    _section(lines, "Missing data", [f"- {m}" for m in report.missing_data if m])

    return "\n".join(lines).rstrip() + "\n"
