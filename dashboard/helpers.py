"""Pure view logic for the AthletiQ dashboard.

Everything the Streamlit page shows is derived here from the in-memory record
list and an explicit ``ViewState``; nothing in this module touches the network
or Streamlit itself.
"""

from __future__ import annotations

import io
import math
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

Record = Dict[str, Any]

PAGE_SIZE = 5
ACTIVITY_TYPES = ("Run", "Lift", "Cycle", "Swim", "Yoga")
INTENSITIES = ("Low", "Medium", "High")
NO_DISTANCE_TYPES = frozenset({"Lift", "Yoga"})
SORT_OPTIONS = {
    "date-desc": "Newest",
    "date-asc": "Oldest",
    "dur-desc": "Duration",
}

CHART_COLORS = ("#3b82f6", "#8b5cf6", "#10b981", "#f59e0b", "#ef4444")
INTENSITY_COLORS = {
    "High": "#f87171",
    "Medium": "#fbbf24",
    "Low": "#34d399",
}

REPORT_TITLE = "Training Report"
REPORT_LIMIT = 50
REPORT_LINES_PER_PAGE = 27


# ---------------------------------------------------------------------------
# View state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ViewState:
    filter_type: str = "All"
    sort_by: str = "date-desc"
    page: int = 1
    page_size: int = PAGE_SIZE

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ViewState":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def with_filter(state: ViewState, filter_type: str) -> ViewState:
    """Changing the filter always returns to the first page."""
    return replace(state, filter_type=filter_type, page=1)


def with_sort(state: ViewState, sort_by: str) -> ViewState:
    if sort_by not in SORT_OPTIONS:
        raise ValueError(f"sort_by must be one of {sorted(SORT_OPTIONS)}")
    return replace(state, sort_by=sort_by)


def with_page(state: ViewState, page: int) -> ViewState:
    return replace(state, page=max(1, page))


# ---------------------------------------------------------------------------
# Filter / sort / paginate
# ---------------------------------------------------------------------------


def utc_today() -> date:
    """Today in UTC, the same calendar the API stamps records with."""
    return datetime.now(timezone.utc).date()


def record_date(record: Record) -> date:
    """Calendar date of a record; accepts 'YYYY-MM-DD' or a full ISO timestamp."""
    raw = record.get("date") or ""
    return datetime.strptime(str(raw)[:10], "%Y-%m-%d").date()


def process_records(records: Sequence[Record], state: ViewState) -> List[Record]:
    data = list(records)
    if state.filter_type != "All":
        data = [r for r in data if r.get("type") == state.filter_type]

    if state.sort_by == "date-desc":
        data.sort(key=record_date, reverse=True)
    elif state.sort_by == "date-asc":
        data.sort(key=record_date)
    elif state.sort_by == "dur-desc":
        data.sort(key=lambda r: r.get("duration") or 0, reverse=True)
    return data


@dataclass
class Page:
    items: List[Record] = field(default_factory=list)
    page: int = 1
    total_pages: int = 0


def paginate(records: Sequence[Record], state: ViewState) -> Page:
    total_pages = math.ceil(len(records) / state.page_size)
    page = state.page
    if total_pages > 0 and page > total_pages:
        page = total_pages
    start = (page - 1) * state.page_size
    return Page(
        items=list(records[start:start + state.page_size]),
        page=page,
        total_pages=total_pages,
    )


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


@dataclass
class Stats:
    volume: float = 0
    count: int = 0
    top: str = "N/A"


def compute_stats(records: Sequence[Record]) -> Stats:
    """Total minutes, session count and the type with the most summed minutes.

    On a tie the type seen last in the list wins.
    """
    if not records:
        return Stats()
    durations: Dict[str, float] = defaultdict(float)
    for r in records:
        durations[r.get("type") or ""] += r.get("duration") or 0
    top = max(reversed(list(durations)), key=lambda t: durations[t])
    return Stats(
        volume=sum(r.get("duration") or 0 for r in records),
        count=len(records),
        top=top,
    )


@dataclass
class HeatmapDay:
    date: date
    active: bool


def activity_heatmap(
    records: Sequence[Record], today: Optional[date] = None, days: int = 14
) -> List[HeatmapDay]:
    """One cell per day, oldest first, ending on ``today``."""
    today = today or utc_today()
    logged = {record_date(r) for r in records if r.get("date")}
    out = []
    for offset in range(days - 1, -1, -1):
        d = today - timedelta(days=offset)
        out.append(HeatmapDay(date=d, active=d in logged))
    return out


def type_breakdown(records: Sequence[Record]) -> List[dict]:
    """Session count per type, in first-seen order (doughnut chart)."""
    counts = Counter(r.get("type") for r in records)
    return [{"name": name, "value": value} for name, value in counts.items()]


def duration_trend(records: Sequence[Record], limit: int = 10) -> List[dict]:
    """Durations of the ``limit`` most recent records, oldest first (area chart)."""
    ordered = sorted(records, key=record_date)[-limit:]
    return [
        {
            "name": record_date(r).strftime("%b %d"),
            "date": record_date(r),
            "duration": r.get("duration") or 0,
        }
        for r in ordered
    ]


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------


def shows_distance(activity_type: str) -> bool:
    return activity_type not in NO_DISTANCE_TYPES


def empty_form(today: Optional[date] = None) -> dict:
    today = today or utc_today()
    return {
        "type": "Run",
        "duration": "",
        "distance": "",
        "intensity": "Medium",
        "date": today.isoformat(),
    }


def form_from_record(record: Record) -> dict:
    distance = record.get("distance")
    return {
        "type": record.get("type") or "Run",
        "duration": record.get("duration") if record.get("duration") is not None else "",
        "distance": distance if distance else "",
        "intensity": record.get("intensity") or "Medium",
        "date": str(record.get("date") or "")[:10],
    }


def _to_number(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return float(value)


def form_payload(form: dict) -> dict:
    """Request body for create/update. Blank numbers are sent as null."""
    return {
        "type": form.get("type"),
        "duration": _to_number(form.get("duration")),
        "distance": _to_number(form.get("distance")),
        "intensity": form.get("intensity"),
        "date": form.get("date") or None,
    }


# ---------------------------------------------------------------------------
# PDF export
# ---------------------------------------------------------------------------


def format_minutes(value: Any) -> str:
    """30.0 -> '30', 42.5 -> '42.5'."""
    if value is None:
        return "0"
    number = float(value)
    return str(int(number)) if number.is_integer() else f"{number:g}"


def report_lines(records: Sequence[Record], limit: int = REPORT_LIMIT) -> List[str]:
    return [
        f"{record_date(r).strftime('%m/%d/%Y')} - {r.get('type')} "
        f"({format_minutes(r.get('duration'))}m) [{r.get('intensity')}]"
        for r in records[:limit]
    ]


def report_pages(records: Sequence[Record], limit: int = REPORT_LIMIT) -> List[List[str]]:
    lines = report_lines(records, limit)
    step = REPORT_LINES_PER_PAGE
    return [lines[i:i + step] for i in range(0, len(lines), step)] or [[]]


def build_pdf_report(records: Sequence[Record], limit: int = REPORT_LIMIT) -> bytes:
    """Plain text PDF of the first ``limit`` records, 27 lines per page."""
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    _, height = A4
    left, top, step = 30, height - 30, 28

    pdf.setTitle(REPORT_TITLE)
    pdf.setFont("Helvetica-Bold", 14)
    pdf.drawString(left, top, REPORT_TITLE)

    for number, lines in enumerate(report_pages(records, limit)):
        if number:
            pdf.showPage()
        y = top - step if number == 0 else top
        pdf.setFont("Helvetica", 11)
        for line in lines:
            pdf.drawString(left, y, line)
            y -= step

    pdf.save()
    return buf.getvalue()
