import os
import time

import requests
import streamlit as st
from streamlit_autorefresh import st_autorefresh

REFRESH_S = 1.0
REQUEST_TIMEOUT_S = 0.8
HEARTBEAT_STALE_POLLS = 3
BASE_URL = os.environ.get("LINE_MONITOR_HMI_URL", "http://127.0.0.1:8000")

st.set_page_config(
    page_title="Line Monitor", layout="wide", initial_sidebar_state="collapsed"
)

st_autorefresh(interval=int(REFRESH_S * 1000), key="auto_refresh")

st.markdown(
    """
    <style>
      .block-container { padding: 0.3rem 0.8rem; }
      header, footer { visibility: hidden; height: 0; }
      #MainMenu { visibility: hidden; }
    </style>
    """,
    unsafe_allow_html=True,
)


def fetch_status(base_url: str):
    try:
        r = requests.get(f"{base_url}/status", timeout=REQUEST_TIMEOUT_S)
        r.raise_for_status()
        return r.json()
    except requests.RequestException:
        return None


def post_override(base_url: str):
    try:
        requests.post(f"{base_url}/override", timeout=REQUEST_TIMEOUT_S)
    except requests.RequestException:
        return


def state_color(state: str) -> str:
    s = str(state).lower()
    if s == "running":
        return "#2ecc71"
    if s == "paused":
        return "#ffb020"
    if s == "faulted":
        return "#ff4d4d"
    return "#ffffff"


def html_escape(text: str) -> str:
    return (text or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def heartbeat_status(status_data: dict | None) -> str:
    if "hb_last_seq" not in st.session_state:
        st.session_state.hb_last_seq = None
        st.session_state.hb_stale_polls = HEARTBEAT_STALE_POLLS

    heartbeat_seq = (status_data or {}).get("heartbeat_seq")
    if not isinstance(heartbeat_seq, int):
        st.session_state.hb_stale_polls += 1
        return "ng"
    if st.session_state.hb_last_seq is None or heartbeat_seq < st.session_state.hb_last_seq:
        st.session_state.hb_last_seq = heartbeat_seq
        st.session_state.hb_stale_polls = 0
        return "pending"
    if heartbeat_seq > st.session_state.hb_last_seq:
        st.session_state.hb_last_seq = heartbeat_seq
        st.session_state.hb_stale_polls = 0
        return "ok"
    st.session_state.hb_stale_polls += 1
    return "ok" if st.session_state.hb_stale_polls < HEARTBEAT_STALE_POLLS else "ng"


def build_events_html(events: list[dict]) -> str:
    rows = []
    for ev in events:
        good = ev.get("good")
        if good is None:
            quality = "<span>-</span>"
        elif good:
            quality = "<span style='color:#2ecc71'>good</span>"
        else:
            quality = "<span style='color:#ff4d4d'>reject</span>"
        ts_ms = ev.get("detected_at_ms")
        ts = time.strftime("%H:%M:%S", time.localtime(ts_ms / 1000.0)) if ts_ms else ""
        rows.append(
            "<tr>"
            f"<td>{html_escape(str(ev.get('seq', 0)).rjust(5, '0'))}</td>"
            f"<td>{html_escape(str(ev.get('where', '')))}</td>"
            f"<td>{html_escape(str(ev.get('gate', '')))}</td>"
            f"<td>{quality}</td>"
            f"<td>{html_escape(ts)}</td>"
            "</tr>"
        )
    return (
        "<table style='width:100%;border-collapse:collapse;'>"
        "<thead><tr><th>#</th><th>Where</th><th>Gate</th><th>Quality</th><th>Time</th></tr></thead>"
        "<tbody>" + "".join(rows) + "</tbody></table>"
    )


status_data = fetch_status(BASE_URL)

left, right = st.columns([6, 4], gap="medium")

with left:
    if status_data is None:
        st.warning("Status unreachable")
    else:
        disp = status_data.get("display") or {}
        bg = "rgb({},{},{})".format(*disp.get("rgb", [0, 0, 0])) if disp.get("alert") else "#222"
        st.markdown(
            f"<div style='background:{bg};color:#fff;padding:24px;border-radius:6px;"
            f"font-size:2.4rem;font-weight:600;'>{html_escape(disp.get('text', ''))}</div>",
            unsafe_allow_html=True,
        )
        events = status_data.get("events") or []
        if events:
            st.markdown(build_events_html(events), unsafe_allow_html=True)
        else:
            st.info("No items yet")

with right:
    ctrl = (status_data or {}).get("controller") or {}
    state = ctrl.get("state", "unknown")
    st.markdown(
        f"<div style='display:flex;justify-content:space-between;font-size:1.6rem;font-weight:600;'>"
        f"<span style='color:{state_color(state)}'>{html_escape(state.upper())}</span>"
        f"<span>{time.strftime('%H:%M:%S')}</span></div>",
        unsafe_allow_html=True,
    )
    if st.button("Start / Stop"):
        post_override(BASE_URL)

    if status_data is not None:
        stats = status_data.get("stats") or {}
        dests = stats.get("destinations") or {}
        cols = st.columns(max(len(dests), 1) + 1, gap="small")
        cols[0].metric("Total", stats.get("total", 0))
        for col, (_key, d) in zip(cols[1:], sorted(dests.items())):
            col.metric(d.get("label", _key), d.get("count", 0), f"{d.get('good', 0)} good")
        remaining = ctrl.get("liveness_remaining_s")
        if remaining is not None:
            st.progress(
                min(1.0, remaining / max(ctrl.get("liveness_timeout_s") or 1.0, 0.001)),
                text=f"Arm timeout in {remaining:.1f}s",
            )
        if ctrl.get("last_error"):
            st.error(ctrl["last_error"])

    runtime_state = heartbeat_status(status_data)
    dot_color = {"ok": "#2ecc71", "pending": "#777777"}.get(runtime_state, "#ff4d4d")
    status_text = {
        "ok": "Runtime: Online",
        "pending": "Runtime: Connecting...",
    }.get(runtime_state, "Runtime: Offline")
    st.markdown(
        f"<div style='display:flex;align-items:center;gap:8px;margin-top:8px;'>"
        f"<span style='width:10px;height:10px;border-radius:50%;background:{dot_color};display:inline-block;'></span>"
        f"<span>{status_text}</span></div>",
        unsafe_allow_html=True,
    )
