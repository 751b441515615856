"""
Tests for the dashboard view logic and its HTTP client.
No Streamlit session and no backend needed.
"""
from datetime import date, datetime, timezone

import pytest
import requests

from dashboard import helpers
from dashboard.api import ApiClient, ApiError
from dashboard.helpers import (
    ViewState,
    activity_heatmap,
    build_pdf_report,
    compute_stats,
    duration_trend,
    empty_form,
    form_from_record,
    form_payload,
    paginate,
    process_records,
    report_lines,
    report_pages,
    shows_distance,
    type_breakdown,
    utc_today,
    with_filter,
    with_page,
    with_sort,
)


def _rec(i, date_str, type_="Run", duration=30, intensity="Medium", distance=0):
    return {
        "id": i, "date": date_str, "type": type_, "duration": duration,
        "distance": distance, "intensity": intensity,
    }


SAMPLE = [
    _rec(1, "2026-03-01", "Run", 40),
    _rec(2, "2026-03-03", "Lift", 60, "High"),
    _rec(3, "2026-03-02", "Lift", 30, "Low"),
    _rec(4, "2026-02-27", "Swim", 25),
]


# ─── View state ──────────────────────────────────────────────────────────────

def test_filter_resets_page():
    state = with_page(ViewState(), 3)
    assert with_filter(state, "Lift") == ViewState(filter_type="Lift", page=1)


def test_view_state_round_trips_through_dict():
    state = with_sort(with_filter(ViewState(), "Swim"), "dur-desc")
    assert ViewState.from_dict(state.to_dict()) == state


def test_unknown_sort_rejected():
    with pytest.raises(ValueError):
        with_sort(ViewState(), "name-asc")


def test_page_never_below_one():
    assert with_page(ViewState(), 0).page == 1


# ─── Filter / sort / paginate ────────────────────────────────────────────────

def test_filter_by_type():
    out = process_records(SAMPLE, ViewState(filter_type="Lift"))
    assert {r["id"] for r in out} == {2, 3}


def test_sort_orders():
    assert [r["id"] for r in process_records(SAMPLE, ViewState())] == [2, 3, 1, 4]
    assert [r["id"] for r in process_records(SAMPLE, ViewState(sort_by="date-asc"))] == [4, 1, 3, 2]
    assert [r["id"] for r in process_records(SAMPLE, ViewState(sort_by="dur-desc"))] == [2, 1, 3, 4]


def test_process_does_not_mutate_input():
    original = list(SAMPLE)
    process_records(SAMPLE, ViewState(sort_by="date-asc"))
    assert SAMPLE == original


def test_pagination_last_page_partial():
    records = [_rec(i, f"2026-01-{i + 1:02d}") for i in range(12)]
    page = paginate(records, ViewState(page=3))
    assert page.total_pages == 3
    assert len(page.items) == 2
    assert page.page == 3


def test_pagination_clamps_past_end():
    records = [_rec(i, "2026-01-01") for i in range(6)]
    page = paginate(records, ViewState(page=9))
    assert page.page == 2
    assert len(page.items) == 1


def test_pagination_empty():
    page = paginate([], ViewState())
    assert page.total_pages == 0
    assert page.items == []


# ─── Aggregates ──────────────────────────────────────────────────────────────

def test_top_activity_by_summed_duration():
    records = [
        _rec(1, "2026-01-01", "Run", 20),
        _rec(2, "2026-01-02", "Run", 20),
        _rec(3, "2026-01-03", "Run", 0),
        _rec(4, "2026-01-04", "Lift", 90),
    ]
    stats = compute_stats(records)
    assert stats.top == "Lift"
    assert stats.volume == 130
    assert stats.count == 4


def test_stats_empty():
    stats = compute_stats([])
    assert (stats.volume, stats.count, stats.top) == (0, 0, "N/A")


def test_heatmap_fourteen_days():
    records = [_rec(1, "2026-03-14"), _rec(2, "2026-03-01T09:00:00Z"), _rec(3, "2026-02-28")]
    cells = activity_heatmap(records, today=date(2026, 3, 14))
    assert len(cells) == 14
    assert cells[0].date == date(2026, 3, 1)
    assert cells[-1].date == date(2026, 3, 14)
    assert [c.date.day for c in cells if c.active] == [1, 14]


def test_type_breakdown_counts_sessions():
    assert type_breakdown(SAMPLE) == [
        {"name": "Run", "value": 1},
        {"name": "Lift", "value": 2},
        {"name": "Swim", "value": 1},
    ]


def test_duration_trend_last_ten_ascending():
    records = [_rec(i, f"2026-01-{i + 1:02d}", duration=i) for i in range(15)]
    trend = duration_trend(list(reversed(records)))
    assert len(trend) == 10
    assert [p["duration"] for p in trend] == list(range(5, 15))
    assert trend[0]["name"] == "Jan 06"


# ─── Forms ───────────────────────────────────────────────────────────────────

def test_distance_hidden_for_lift_and_yoga():
    assert not shows_distance("Lift")
    assert not shows_distance("Yoga")
    assert shows_distance("Run")


def test_empty_form_defaults():
    assert empty_form(date(2026, 4, 2)) == {
        "type": "Run", "duration": "", "distance": "",
        "intensity": "Medium", "date": "2026-04-02",
    }


def test_utc_today_follows_utc_calendar():
    assert utc_today() == datetime.now(timezone.utc).date()


def test_defaults_use_utc_today(monkeypatch):
    monkeypatch.setattr(helpers, "utc_today", lambda: date(2026, 1, 1))
    assert empty_form()["date"] == "2026-01-01"
    assert activity_heatmap([])[-1].date == date(2026, 1, 1)


def test_form_round_trip_for_edit():
    form = form_from_record(_rec(7, "2026-03-01T00:00:00.000Z", "Lift", 45, "High", 0))
    assert form["date"] == "2026-03-01"
    assert form["distance"] == ""
    payload = form_payload(form)
    assert payload == {
        "type": "Lift", "duration": 45.0, "distance": None,
        "intensity": "High", "date": "2026-03-01",
    }


def test_form_payload_rejects_garbage_number():
    with pytest.raises(ValueError):
        form_payload({**empty_form(), "duration": "half an hour"})


# ─── PDF export ──────────────────────────────────────────────────────────────

def test_report_lines_format_and_limit():
    records = [_rec(i, "2026-03-01", "Run", 30, "High") for i in range(60)]
    lines = report_lines(records)
    assert len(lines) == 50
    assert lines[0] == "03/01/2026 - Run (30m) [High]"


def test_report_pages_split_every_27_lines():
    records = [_rec(i, "2026-03-01") for i in range(80)]
    pages = report_pages(records)
    assert [len(p) for p in pages] == [27, 23]


def test_pdf_report_renders():
    records = [_rec(i, "2026-03-01") for i in range(50)]
    assert build_pdf_report(records).startswith(b"%PDF")


def test_pdf_report_empty():
    assert build_pdf_report([]).startswith(b"%PDF")


# ─── API client ──────────────────────────────────────────────────────────────

class _FakeResponse:
    def __init__(self, status, body):
        self.status_code = status
        self._body = body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        return self._body


class _FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.exc:
            raise self.exc
        return self.response


def test_client_uses_configured_base_url(monkeypatch):
    monkeypatch.setenv("ATHLETIQ_API_URL", "http://backend:9000/")
    session = _FakeSession(_FakeResponse(200, [SAMPLE[0]]))
    client = ApiClient(session=session)
    assert client.list_workouts() == [SAMPLE[0]]
    assert session.calls[0][:2] == ("GET", "http://backend:9000/api/workouts")


def test_client_health_path():
    body = {"ok": True, "db_connected": True, "db_type": "sqlite", "timestamp": "x"}
    session = _FakeSession(_FakeResponse(200, body))
    assert ApiClient("http://x", session=session).health() == body
    assert session.calls[0][:2] == ("GET", "http://x/health")


def test_client_update_and_delete_paths():
    session = _FakeSession(_FakeResponse(200, {"message": "Deleted"}))
    client = ApiClient("http://x", session=session)
    client.update_workout(5, {"duration": 10})
    client.delete_workout(5)
    assert [(m, u) for m, u, _ in session.calls] == [
        ("PUT", "http://x/api/workouts/5"),
        ("DELETE", "http://x/api/workouts/5"),
    ]
    assert session.calls[0][2]["json"] == {"duration": 10}


def test_client_upload_sends_file_field():
    session = _FakeSession(_FakeResponse(200, {"message": "Success"}))
    ApiClient("http://x", session=session).upload_csv("log.csv", b"type\nRun\n")
    files = session.calls[0][2]["files"]
    assert files["file"][0] == "log.csv"


def test_client_http_error_raises_api_error():
    session = _FakeSession(_FakeResponse(500, {"detail": "boom"}))
    with pytest.raises(ApiError):
        ApiClient("http://x", session=session).create_workout({})


def test_client_connection_error_raises_api_error():
    session = _FakeSession(exc=requests.ConnectionError("refused"))
    with pytest.raises(ApiError):
        ApiClient("http://x", session=session).analyze()
