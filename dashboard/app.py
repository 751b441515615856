"""AthletiQ — Streamlit dashboard.

Run with:
    streamlit run dashboard/app.py

Set ATHLETIQ_API_URL to point at a backend other than http://localhost:5000.
"""

from __future__ import annotations

import logging
import os
from datetime import date

import plotly.graph_objects as go
import streamlit as st

from dashboard.api import ApiClient, ApiError
from dashboard.helpers import (
    ACTIVITY_TYPES,
    CHART_COLORS,
    INTENSITIES,
    INTENSITY_COLORS,
    SORT_OPTIONS,
    ViewState,
    activity_heatmap,
    build_pdf_report,
    compute_stats,
    duration_trend,
    empty_form,
    form_from_record,
    form_payload,
    format_minutes,
    paginate,
    process_records,
    shows_distance,
    type_breakdown,
    utc_today,
    with_filter,
    with_page,
    with_sort,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s %(message)s",
)

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------

st.set_page_config(page_title="AthletiQ AI", page_icon="🏃", layout="wide")


@st.cache_resource
def get_client() -> ApiClient:
    return ApiClient()


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


def _init_state() -> None:
    ss = st.session_state
    ss.setdefault("view", ViewState().to_dict())
    ss.setdefault("workouts", None)
    ss.setdefault("edit_id", None)
    ss.setdefault("form", empty_form())
    ss.setdefault("show_form", False)
    ss.setdefault("ai_status", "idle")  # idle | loading | result
    ss.setdefault("ai_data", None)
    ss.setdefault("pending_delete", None)


def _view() -> ViewState:
    return ViewState.from_dict(st.session_state["view"])


def _set_view(state: ViewState) -> None:
    st.session_state["view"] = state.to_dict()


def fetch_data() -> None:
    try:
        st.session_state["workouts"] = get_client().list_workouts()
    except ApiError:
        st.session_state["workouts"] = st.session_state["workouts"] or []
        st.error("API Error - Ensure Backend is running")


def backend_status() -> str:
    try:
        health = get_client().health()
    except ApiError:
        return "offline"
    db_type = health.get("db_type", "unknown")
    if not health.get("db_connected", True):
        return f"degraded ({db_type} unreachable)"
    return f"connected ({db_type})"


# Button callbacks run before the next script pass, so they may seed
# widget keys such as "form-type".


def _open_form(form: dict, edit_id) -> None:
    st.session_state["form"] = form
    st.session_state["edit_id"] = edit_id
    known = form["type"] in ACTIVITY_TYPES
    st.session_state["form-type"] = form["type"] if known else ACTIVITY_TYPES[0]
    st.session_state["show_form"] = True


def _open_add() -> None:
    _open_form(empty_form(), None)


def _open_edit(record: dict) -> None:
    _open_form(form_from_record(record), record["id"])


def _close_form() -> None:
    st.session_state["show_form"] = False


def _request_delete(record_id: int) -> None:
    st.session_state["pending_delete"] = record_id


def _cancel_delete() -> None:
    st.session_state["pending_delete"] = None


def _confirm_delete() -> None:
    record_id = st.session_state["pending_delete"]
    st.session_state["pending_delete"] = None
    if record_id is None:
        return
    try:
        get_client().delete_workout(record_id)
        st.toast("Deleted")
    except ApiError:
        st.toast("Failed to delete. Check server.", icon="⚠️")
    fetch_data()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_stats(workouts: list) -> None:
    stats = compute_stats(workouts)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total Volume", f"{format_minutes(stats.volume)} min")
    c2.metric("Total Sessions", stats.count)
    c3.metric("Top Activity", stats.top)
    with c4:
        st.caption("CONSISTENCY (14 DAYS)")
        cells = "".join(
            f'<div title="{d.date.isoformat()}" style="width:8px;height:32px;'
            f'border-radius:2px;background:{"#f59e0b" if d.active else "#1e293b"};"></div>'
            for d in activity_heatmap(workouts, utc_today())
        )
        st.markdown(f'<div style="display:flex;gap:4px;">{cells}</div>', unsafe_allow_html=True)


def _render_charts(workouts: list) -> None:
    left, right = st.columns([2, 1])
    with left:
        st.subheader("Volume Trend")
        trend = duration_trend(workouts)
        fig = go.Figure(
            go.Scatter(
                x=[p["name"] for p in trend],
                y=[p["duration"] for p in trend],
                mode="lines",
                fill="tozeroy",
                line=dict(color=CHART_COLORS[0], width=3, shape="spline"),
            )
        )
        fig.update_layout(height=300, margin=dict(l=10, r=10, t=10, b=10))
        st.plotly_chart(fig, width="stretch")
    with right:
        st.subheader("Activity Mix")
        mix = type_breakdown(workouts)
        fig = go.Figure(
            go.Pie(
                labels=[m["name"] for m in mix],
                values=[m["value"] for m in mix],
                hole=0.6,
                marker=dict(colors=[CHART_COLORS[i % len(CHART_COLORS)] for i in range(len(mix))]),
            )
        )
        fig.update_layout(height=300, margin=dict(l=10, r=10, t=10, b=10))
        st.plotly_chart(fig, width="stretch")


def _render_log(workouts: list) -> None:
    st.subheader("Training Log")
    state = _view()

    f1, f2, f3, f4 = st.columns([2, 2, 1, 1])
    filter_options = ["All", *ACTIVITY_TYPES]
    chosen_filter = f1.selectbox(
        "Type", filter_options, index=filter_options.index(state.filter_type)
        if state.filter_type in filter_options else 0,
    )
    if chosen_filter != state.filter_type:
        state = with_filter(state, chosen_filter)
    sort_keys = list(SORT_OPTIONS)
    chosen_sort = f2.selectbox(
        "Sort", sort_keys, index=sort_keys.index(state.sort_by),
        format_func=SORT_OPTIONS.get,
    )
    state = with_sort(state, chosen_sort)

    processed = process_records(workouts, state)
    page = paginate(processed, state)
    state = with_page(state, page.page)
    _set_view(state)

    f3.download_button(
        "Export PDF",
        data=build_pdf_report(processed),
        file_name="Report.pdf",
        mime="application/pdf",
    )
    uploaded = f4.file_uploader("Import CSV", type=["csv"], label_visibility="collapsed")
    if uploaded is not None and st.session_state.get("_last_upload") != uploaded.file_id:
        st.session_state["_last_upload"] = uploaded.file_id
        try:
            get_client().upload_csv(uploaded.name, uploaded.getvalue())
            st.toast("Imported!")
        except ApiError:
            st.toast("Import failed. Check server.", icon="⚠️")
        fetch_data()
        st.rerun()

    if not page.items:
        st.info("No sessions logged yet.")
    for rec in page.items:
        cols = st.columns([2, 2, 1, 1, 1, 1, 1])
        cols[0].write(rec.get("date", "")[:10])
        cols[1].write(rec.get("type") or "")
        cols[2].write(f"{format_minutes(rec.get('duration'))}m")
        cols[3].write(f"{rec['distance']}km" if rec.get("distance") else "-")
        color = INTENSITY_COLORS.get(rec.get("intensity"), INTENSITY_COLORS["Low"])
        cols[4].markdown(
            f'<span style="color:{color};font-weight:700;">{rec.get("intensity") or ""}</span>',
            unsafe_allow_html=True,
        )
        cols[5].button("Edit", key=f"edit-{rec['id']}", on_click=_open_edit, args=(rec,))
        cols[6].button("Delete", key=f"del-{rec['id']}", on_click=_request_delete, args=(rec["id"],))
        if st.session_state["pending_delete"] == rec["id"]:
            st.warning(f"Delete the {rec.get('type') or ''} session from {rec.get('date', '')[:10]}?")
            yes, no = st.columns(2)
            yes.button("Confirm delete", key="confirm-del", type="primary", on_click=_confirm_delete)
            no.button("Keep it", key="cancel-del", on_click=_cancel_delete)

    if page.total_pages > 1:
        p1, p2, p3 = st.columns([1, 2, 1])
        if p1.button("Prev", disabled=page.page <= 1):
            _set_view(with_page(state, page.page - 1))
            st.rerun()
        p2.caption(f"Page {page.page} of {page.total_pages}")
        if p3.button("Next", disabled=page.page >= page.total_pages):
            _set_view(with_page(state, page.page + 1))
            st.rerun()


def _render_form() -> None:
    form = st.session_state["form"]
    editing = st.session_state["edit_id"] is not None
    today = utc_today()
    st.subheader("Edit Session" if editing else "Log Session")
    # Outside the form so that changing it reruns and toggles the distance field.
    activity = st.selectbox("Type", list(ACTIVITY_TYPES), key="form-type")
    with st.form("workout-form"):
        duration = st.text_input("Duration (min)", value=str(form["duration"]))
        distance = ""
        if shows_distance(activity):
            distance = st.text_input("Distance (km)", value=str(form["distance"]))
        intensity = st.selectbox(
            "Intensity", INTENSITIES,
            index=INTENSITIES.index(form["intensity"]) if form["intensity"] in INTENSITIES else 1,
        )
        session_date = st.date_input(
            "Date",
            value=min(date.fromisoformat(form["date"]), today) if form["date"] else today,
            max_value=today,
        )
        submitted = st.form_submit_button("Save")
        st.form_submit_button("Cancel", on_click=_close_form)

    if submitted:
        form = {
            "type": activity, "duration": duration, "distance": distance,
            "intensity": intensity, "date": session_date.isoformat(),
        }
        try:
            payload = form_payload(form)
            client = get_client()
            if editing:
                client.update_workout(st.session_state["edit_id"], payload)
            else:
                client.create_workout(payload)
        except (ApiError, ValueError):
            st.session_state["form"] = form
            st.error("Failed to save. Check server.")
            return
        st.toast("Saved!")
        st.session_state["show_form"] = False
        fetch_data()
        st.rerun()


def _render_ai_panel() -> None:
    st.subheader("AI Coach")
    status = st.session_state["ai_status"]
    if st.button("Analyze", disabled=status == "loading"):
        st.session_state["ai_status"] = "loading"
        st.session_state["ai_data"] = None
        with st.spinner("Analyzing your training..."):
            try:
                st.session_state["ai_data"] = get_client().analyze()
                st.session_state["ai_status"] = "result"
            except ApiError:
                st.session_state["ai_status"] = "idle"
                st.info("AI Unavailable: Backend or Gemini API issue.")

    data = st.session_state["ai_data"]
    if st.session_state["ai_status"] == "result" and data:
        st.metric("Score", data.get("score", 0))
        for label, key in (("Today", "today"), ("This Week", "weekly"),
                           ("This Month", "monthly"), ("This Year", "yearly")):
            st.markdown(f"**{label}:** {data.get(key, '')}")
        st.markdown("**Next 3 Days**")
        for item in data.get("plan", []):
            st.markdown(f"- {item}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

_init_state()
if st.session_state["workouts"] is None:
    fetch_data()
workouts = st.session_state["workouts"] or []

head, action = st.columns([5, 1])
head.title("AthletiQ AI")
head.caption(f"Backend: {backend_status()}")
action.button("Log Entry", key="log-entry", type="primary", on_click=_open_add)

if st.session_state["show_form"]:
    _render_form()

_render_stats(workouts)
_render_charts(workouts)

log_col, ai_col = st.columns([2, 1])
with log_col:
    _render_log(workouts)
with ai_col:
    _render_ai_panel()
