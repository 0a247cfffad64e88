"""Pure translation of CourtListener records into directory shapes.

Nothing here performs I/O. Every translator tolerates missing optional
fields and substitutes ``None`` (or an "Unknown ..." label for required
display fields) instead of raising.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

COURTLISTENER_WEB_BASE = "https://www.courtlistener.com"

_US_ALIASES = {"USA", "UNITED STATES", "FEDERAL", "US"}

# Ordered: the first matching category wins.
_OUTCOME_PATTERNS: List[Tuple[str, str, List[re.Pattern]]] = [
    ("dismissed", "Dismissed", [re.compile(p, re.I) for p in (r"dismiss", r"thrown out", r"quash", r"terminated")]),
    ("settled", "Settled", [re.compile(p, re.I) for p in (r"settle", r"stipulated judgment")]),
    ("vacated", "Vacated", [re.compile(p, re.I) for p in (r"vacated?", r"set aside")]),
    ("remanded", "Remanded", [re.compile(r"remand", re.I)]),
    ("judgment_plaintiff", "Judgment for Plaintiff", [re.compile(p, re.I) for p in (r"plaintiff", r"grant.*plaintiff")]),
    ("judgment_defendant", "Judgment for Defendant", [re.compile(p, re.I) for p in (r"defendant", r"grant.*defendant")]),
    ("pending", "Active", [re.compile(p, re.I) for p in (r"pending", r"active", r"open")]),
    ("closed", "Closed", [re.compile(p, re.I) for p in (r"closed", r"disposed", r"completed")]),
]


@dataclass
class NormalizedOutcome:
    label: Optional[str]
    category: str


@dataclass
class NormalizedCase:
    """Internal case shape produced from an opinion or a docket."""

    courtlistener_id: str
    case_name: str
    case_number: Optional[str]
    case_type: str
    status: str
    outcome: Optional[str] = None
    jurisdiction: Optional[str] = None
    filing_date: Optional[date] = None
    decision_date: Optional[date] = None
    summary: Optional[str] = None
    source_url: Optional[str] = None
    docket_hash: Optional[str] = None


@dataclass
class NormalizedJudge:
    courtlistener_id: str
    name: str
    court_name: Optional[str] = None
    jurisdiction: Optional[str] = None
    appointed_date: Optional[date] = None
    education: Optional[str] = None
    bio: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizedCourt:
    courtlistener_id: str
    name: str
    full_name: Optional[str] = None
    jurisdiction: Optional[str] = None
    court_type: str = "state"
    website: Optional[str] = None
    in_use: Optional[bool] = None


def to_title(value: str) -> str:
    text = re.sub(r"\s+", " ", value.lower().replace("_", " ")).strip()
    return re.sub(r"(^|\s)(\w)", lambda m: m.group(1) + m.group(2).upper(), text)


def normalize_jurisdiction(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    upper = value.strip().upper()
    if upper in _US_ALIASES:
        return "US"
    if re.fullmatch(r"[A-Z]{2}", upper):
        return upper
    if "CALIFORNIA" in upper:
        return "CA"
    if "NEW YORK" in upper:
        return "NY"
    return upper[:4]


def jurisdiction_from_court_name(name: Optional[str], default: Optional[str] = None) -> Optional[str]:
    name = name or ""
    if "California" in name or "CA " in name:
        return "CA"
    if "Federal" in name or "U.S." in name or "United States" in name:
        return "US"
    return default


def normalize_case_number(raw: Any, fallback: Any = None) -> Optional[str]:
    if raw is None or not str(raw).strip():
        if fallback is not None and str(fallback).strip():
            return normalize_case_number(fallback)
        return None
    display = str(raw).strip().replace("–", "-").replace("—", "-")
    display = re.sub(r"\s+", " ", display).upper()
    return display[:100]


def case_number_key(case_number: Optional[str]) -> Optional[str]:
    if not case_number:
        return None
    key = re.sub(r"[^A-Z0-9]", "", case_number.upper())
    return key or None


def create_docket_hash(
    *,
    case_number_key: Optional[str],
    jurisdiction: Optional[str] = None,
    judge_id: Optional[str] = None,
    courtlistener_id: Any = None,
    filing_date: Any = None,
) -> Optional[str]:
    """Stable sha1 identity for a docket, built from whichever parts exist."""
    filing = filing_date.isoformat() if isinstance(filing_date, (date, datetime)) else (filing_date or "")
    parts = [
        case_number_key.upper() if case_number_key else "",
        jurisdiction.upper() if jurisdiction else "",
        str(judge_id) if judge_id else "",
        str(courtlistener_id) if courtlistener_id else "",
        str(filing)[:10],
    ]
    payload = "|".join(p for p in parts if p)
    if not payload:
        return None
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def normalize_outcome_label(raw: Optional[str]) -> NormalizedOutcome:
    value = (raw or "").strip()
    if not value:
        return NormalizedOutcome(label=None, category="other")
    for category, label, patterns in _OUTCOME_PATTERNS:
        if any(p.search(value) for p in patterns):
            return NormalizedOutcome(label=label, category=category)
    return NormalizedOutcome(label=to_title(value), category="other")


def format_date(value: Any) -> Optional[date]:
    """Parse an ISO date or timestamp; anything unparseable becomes None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def build_courtlistener_url(absolute_url: Optional[str]) -> Optional[str]:
    if not absolute_url:
        return None
    if absolute_url.startswith("http"):
        return absolute_url
    return f"{COURTLISTENER_WEB_BASE}{absolute_url}"


def resource_id_from_url(value: Any) -> Optional[str]:
    """Return the trailing id of a CourtListener resource URL (or the value itself)."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return str(value)
    match = re.search(r"/(\d+)/?$", str(value))
    if match:
        return match.group(1)
    return str(value) if str(value).isdigit() else None


def classify_case_type(docket: Dict[str, Any]) -> str:
    nature = (docket.get("nature_of_suit") or "").lower()
    jurisdiction = (docket.get("jurisdiction_type") or "").lower()
    case_name = (docket.get("case_name") or docket.get("case_name_short") or "").lower()

    if "criminal" in jurisdiction or "criminal" in nature or "people v" in case_name:
        return "Criminal"
    if (
        "family" in jurisdiction
        or "domestic" in nature
        or "family" in nature
        or "marriage" in case_name
        or "custody" in case_name
    ):
        return "Family Law"
    if "probate" in nature or "estate" in case_name:
        return "Probate"
    if "bankruptcy" in nature or "bankruptcy" in case_name:
        return "Bankruptcy"
    if "tax" in nature or "tax" in jurisdiction:
        return "Tax"
    if "labor" in nature or "employment" in nature:
        return "Employment"
    if "appeal" in jurisdiction or "appeal" in case_name:
        return "Appeals"
    if "traffic" in nature:
        return "Traffic"
    if "immigration" in nature or "immigration" in case_name:
        return "Immigration"
    if "insurance" in nature:
        return "Insurance"
    if "civil" in jurisdiction or "civil" in nature:
        return "Civil Litigation"
    return "General Litigation"


def opinion_to_case(
    opinion: Dict[str, Any],
    cluster: Optional[Dict[str, Any]] = None,
    *,
    jurisdiction: Optional[str] = None,
) -> Optional[NormalizedCase]:
    """Build a decided case from an opinion and (optionally) its cluster.

    Returns None only when the opinion has no usable id at all.
    """
    cluster = cluster or {}
    opinion_id = resource_id_from_url(opinion.get("id"))
    cluster_id = (
        resource_id_from_url(cluster.get("id"))
        or resource_id_from_url(opinion.get("cluster_id"))
        or resource_id_from_url(opinion.get("cluster"))
    )
    if not opinion_id and not cluster_id:
        return None

    case_name = (
        cluster.get("case_name")
        or cluster.get("case_name_short")
        or opinion.get("case_name")
        or "Unknown Case"
    )
    decision_date = format_date(cluster.get("date_filed") or opinion.get("date_filed"))
    if cluster_id:
        courtlistener_id = f"cluster_{cluster_id}"
        case_number = normalize_case_number(cluster.get("docket_number"), fallback=f"CL-{cluster_id}")
    else:
        courtlistener_id = f"opinion_{opinion_id}"
        case_number = f"CL-O{opinion_id}"

    precedential = cluster.get("precedential_status") or opinion.get("precedential_status")
    source_url = build_courtlistener_url(cluster.get("absolute_url") or opinion.get("absolute_url"))
    return NormalizedCase(
        courtlistener_id=courtlistener_id,
        case_name=str(case_name)[:500],
        case_number=case_number,
        case_type="Opinion",
        status="decided",
        outcome=precedential or None,
        jurisdiction=normalize_jurisdiction(jurisdiction),
        filing_date=decision_date,
        decision_date=decision_date,
        summary=f"CourtListener opinion {opinion_id}" if opinion_id else None,
        source_url=source_url,
    )


def docket_to_case(
    docket: Dict[str, Any],
    *,
    judge_id: Optional[str] = None,
    jurisdiction: Optional[str] = None,
) -> Optional[NormalizedCase]:
    docket_id = resource_id_from_url(docket.get("id"))
    filing_date = format_date(docket.get("date_filed"))
    if not docket_id or filing_date is None:
        return None

    decision_date = format_date(docket.get("date_terminated")) or format_date(docket.get("date_last_filing"))
    outcome = normalize_outcome_label(docket.get("status") or ("Closed" if decision_date else None))
    if outcome.category in ("dismissed", "settled"):
        status = outcome.category
    else:
        status = "decided" if decision_date else "pending"

    case_number = normalize_case_number(docket.get("docket_number"), fallback=f"CL-D{docket_id}")
    juris = normalize_jurisdiction(jurisdiction)
    case_name = docket.get("case_name") or docket.get("case_name_short") or "Unknown Case"
    return NormalizedCase(
        courtlistener_id=f"docket_{docket_id}",
        case_name=str(case_name)[:500],
        case_number=case_number,
        case_type=classify_case_type(docket),
        status=status,
        outcome=outcome.label,
        jurisdiction=juris,
        filing_date=filing_date,
        decision_date=decision_date,
        summary=_docket_summary(docket, filing_date, decision_date),
        source_url=build_courtlistener_url(docket.get("absolute_url")),
        docket_hash=create_docket_hash(
            case_number_key=case_number_key(case_number),
            jurisdiction=juris,
            judge_id=judge_id,
            courtlistener_id=docket_id,
            filing_date=filing_date,
        ),
    )


def _docket_summary(docket: Dict[str, Any], filing_date: date, decision_date: Optional[date]) -> str:
    parts = [f"Filed {filing_date.isoformat()}"]
    if decision_date:
        parts.append(f"Closed {decision_date.isoformat()}")
    if docket.get("nature_of_suit"):
        parts.append(f"Nature: {docket['nature_of_suit']}")
    if docket.get("jurisdiction_type"):
        parts.append(f"Jurisdiction: {to_title(docket['jurisdiction_type'])}")
    entries = docket.get("docket_entries_count")
    if isinstance(entries, int) and entries > 0:
        parts.append(f"Entries: {entries}")
    if docket.get("assigned_to_str"):
        parts.append(f"Assigned: {docket['assigned_to_str']}")
    return " | ".join(parts)[:500]


def _court_label(court: Any) -> Optional[str]:
    if isinstance(court, dict):
        return court.get("full_name") or court.get("name") or court.get("short_name")
    return None


def person_to_judge(person: Dict[str, Any], *, default_jurisdiction: Optional[str] = None) -> Optional[NormalizedJudge]:
    person_id = resource_id_from_url(person.get("id"))
    if not person_id:
        return None

    name = person.get("name_full") or person.get("name")
    if not name:
        name = " ".join(p for p in (person.get("name_first"), person.get("name_last")) if p) or "Unknown Judge"

    positions = [p for p in (person.get("positions") or []) if isinstance(p, dict)]
    current = next((p for p in positions if not p.get("date_termination")), positions[0] if positions else None)

    court_name = None
    jurisdiction = default_jurisdiction
    appointed = None
    if current is not None:
        court_name = _court_label(current.get("court"))
        jurisdiction = jurisdiction_from_court_name(court_name, default_jurisdiction)
        appointed = format_date(current.get("date_start"))

    education = None
    educations = [e for e in (person.get("educations") or []) if isinstance(e, dict)]
    if educations:
        education = "; ".join(
            f"{(e.get('school') or {}).get('name') or 'Unknown'} ({e.get('degree') or 'Unknown degree'})"
            for e in educations
        )

    bio = None
    if positions:
        bio = "; ".join(
            f"{p.get('position_type') or 'Judge'} at {_court_label(p.get('court')) or 'Unknown Court'}"
            for p in positions
        )

    return NormalizedJudge(
        courtlistener_id=person_id,
        name=str(name)[:255],
        court_name=court_name,
        jurisdiction=jurisdiction,
        appointed_date=appointed,
        education=education,
        bio=bio,
        raw=person,
    )


def court_to_court(court: Dict[str, Any], *, default_jurisdiction: Optional[str] = None) -> Optional[NormalizedCourt]:
    court_id = court.get("id")
    if not court_id:
        return None
    name = court.get("short_name") or court.get("full_name") or str(court_id)
    full_name = court.get("full_name") or None
    label = full_name or name
    # CourtListener court-level codes: F, FD, FB, ... are federal.
    level = str(court.get("jurisdiction") or "")
    if level.startswith("F") or any(k in label for k in ("Federal", "U.S.", "Circuit", "United States")):
        court_type = "federal"
    else:
        court_type = "state"
    return NormalizedCourt(
        courtlistener_id=str(court_id),
        name=str(name)[:255],
        full_name=full_name,
        jurisdiction=jurisdiction_from_court_name(label, default_jurisdiction),
        court_type=court_type,
        website=court.get("url") or None,
        in_use=court.get("in_use"),
    )
