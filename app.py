from __future__ import annotations
import asyncio, os, streamlit as st
from datalens.utils.logger import configure_logger
from datalens.utils.secrets import ensure_dotenv_loaded
from datalens.core.errors import ChatRejected, ParseError
from datalens.core.session import AnalysisSession
from datalens.data_processing.summarizer import summary_to_frame
from datalens.ai_engine.report import build_markdown_report

ensure_dotenv_loaded(); logger=configure_logger()
st.set_page_config(page_title="DataLens: AI Data Analysis", page_icon="📊", layout="wide")
st.title("AI-Powered Data Analysis Dashboard")

with st.sidebar:
    st.subheader("🔐 Model")
    provider = st.radio("Provider", ["openai", "gemini"], horizontal=True)
    k = st.text_input("API Key", type="password")
    if k: os.environ["OPENAI_API_KEY" if provider=="openai" else "GOOGLE_API_KEY"]=k
    os.environ["LLM_PROVIDER"]=provider
    if st.button("Apply"): st.session_state.pop("session", None)

if "session" not in st.session_state: st.session_state.session=AnalysisSession()
if "last_upload" not in st.session_state: st.session_state.last_upload=None
session: AnalysisSession = st.session_state.session

up=st.file_uploader("Upload CSV File", type=["csv","tsv","txt"])
if up and up.file_id!=st.session_state.last_upload:
    try:
        with st.spinner("Generating insights..."):
            asyncio.run(session.upload(up.name, up.getvalue()))
        st.session_state.last_upload=up.file_id
    except ParseError as e: st.error(f"Could not read file: {e}")

state=session.state
if state.dataset is not None:
    st.subheader("AI-Generated Insights")
    for insight in state.insights: st.markdown(f"- {insight}")
    if st.button("Regenerate insights", disabled=state.is_busy):
        with st.spinner("Generating insights..."): asyncio.run(session.regenerate_insights())
        st.rerun()

    st.subheader("AI Analysis Chat")
    for msg in state.conversation:
        with st.chat_message(msg.role.value): st.markdown(msg.content)
    prompt=st.chat_input("Ask a question about your data...", disabled=not state.can_submit_chat)
    if prompt:
        try:
            with st.spinner("AI is thinking..."): asyncio.run(session.submit_chat(prompt))
        except ChatRejected as e: st.warning(str(e))
        st.rerun()

    st.subheader("Statistical Summary")
    st.dataframe(summary_to_frame(state.summary), use_container_width=True, hide_index=True)
    st.download_button("Download report (.md)", data=build_markdown_report(state), file_name="datalens_report.md", mime="text/markdown")
else:
    st.info("Upload a CSV file to start.")
