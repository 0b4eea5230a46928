import hashlib
from pathlib import Path
import sys

import streamlit as st

# Ensure imports work whether the app is executed as a module or as a script
# where the repository directory might not already be on ``sys.path``.
CURRENT_DIR = Path(__file__).resolve().parent

if __package__:
    from .chart import build_progress_chart
    from .data_processing import KieserChartError, parse_training_csv
    from .tooltip import tooltip_html
else:
    if str(CURRENT_DIR) not in sys.path:
        sys.path.insert(0, str(CURRENT_DIR))
    from chart import build_progress_chart
    from data_processing import KieserChartError, parse_training_csv
    from tooltip import tooltip_html


st.set_page_config(page_title="Kieser Chart", layout="wide", page_icon="🏋️")
st.markdown(
    """
    <style>
        .stApp { background-color: white; }
        table.kc-tooltip td { padding: 2px 8px; }
        table.kc-tooltip td.value { text-align: right; }
        table.kc-tooltip td.duration { font-weight: 600; }
    </style>
    """,
    unsafe_allow_html=True,
)


def _file_digest(file_bytes: bytes) -> str:
    return hashlib.sha1(file_bytes).hexdigest()[:10]


@st.cache_data(show_spinner=False, max_entries=8)
def _parse_cached(file_name: str, file_bytes: bytes):
    class _MemoryFile:
        def __init__(self, name: str, data: bytes):
            self.name = name
            self._data = data

        def read(self) -> bytes:
            return self._data

        def seek(self, *_args, **_kwargs) -> None:  # pragma: no cover - interface shim
            return None

    return parse_training_csv(_MemoryFile(file_name, file_bytes))


st.sidebar.header("🏋️ Training Log")
uploaded = st.sidebar.file_uploader(
    "Upload training CSV (semicolon separated)",
    type=["csv", "txt"],
    key="training_uploader",
)
group_mode = st.sidebar.toggle(
    "Group machines",
    value=False,
    key="group_mode",
    help="Sort machines by code so each equipment group sits together.",
)

if uploaded is None:
    st.sidebar.info("Upload a training log to begin.")
    st.stop()

file_bytes = uploaded.getvalue()
digest = _file_digest(file_bytes)
if st.session_state.get("chart_digest") != digest:
    try:
        session = _parse_cached(uploaded.name, file_bytes)
    except KieserChartError as exc:
        st.session_state.pop("chart_session", None)
        st.session_state.pop("chart_digest", None)
        st.sidebar.error(f"Failed to read {uploaded.name}: {exc}")
        st.stop()
    st.session_state["chart_session"] = session
    st.session_state["chart_digest"] = digest

session = st.session_state["chart_session"]
if session.empty:
    st.sidebar.warning("No machine in this file has any recorded values.")
    st.stop()

series = session.series(group_mode)
st.sidebar.caption(f"{uploaded.name}: {len(session.machine_series)} machines")

st.subheader("Training progress")
st.altair_chart(build_progress_chart(series), use_container_width=True)

dates = session.dates()
if dates:
    st.markdown("### Session details")
    selected_date = st.selectbox("Training date", options=dates, index=len(dates) - 1)
    st.markdown(tooltip_html(series, selected_date), unsafe_allow_html=True)
