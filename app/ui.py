# Run from project root: streamlit run app/ui.py
# UI talks to backend API (POST /api/chat/stream for SSE). History is stored on the server by thread_id.

import json
import os

import requests
import streamlit as st

# Backend config
API_BASE = os.environ.get("API_BASE", "http://localhost:8000")

st.title("Budget Book RAG Assistant")

try:
    r = requests.get(f"{API_BASE}/api/health", timeout=10)
    if not (r.ok and r.json().get("agent_available")):
        st.caption("Agent is not available. Check the backend logs.")
except requests.RequestException:
    st.caption("Backend not reachable. Start the API first.")

# One thread per conversation; the server assigns the id on the first answer
if "thread_id" not in st.session_state:
    st.session_state.thread_id = None
if "messages" not in st.session_state:
    st.session_state.messages = []
if st.button("New chat", key="new_chat"):
    st.session_state.thread_id = None
    st.session_state.messages = []
    st.rerun()

if not st.session_state.messages:
    try:
        r = requests.get(f"{API_BASE}/api/examples", timeout=10)
        examples = r.json().get("examples", []) if r.ok else []
    except requests.RequestException:
        examples = []
    if examples:
        st.caption("Try asking:")
        for example in examples:
            st.caption(f"  • {example}")

for msg in st.session_state.messages:
    with st.chat_message(msg["role"]):
        st.markdown(msg["content"])


def _read_events(response: requests.Response):
    """Parse an SSE response into (event, data) pairs."""
    current_event = None
    for line in response.iter_lines(decode_unicode=True):
        if not line:
            continue
        if line.startswith("event:"):
            current_event = line[6:].strip()
        elif line.startswith("data:") and current_event:
            try:
                data = json.loads(line[5:].strip())
            except json.JSONDecodeError:
                data = {}
            yield current_event, data


if st.session_state.get("pending_query"):
    prompt = st.session_state.pending_query
    with st.chat_message("assistant"):
        status_placeholder = st.empty()
        status_placeholder.caption("Thinking...")
        answer_placeholder = st.empty()
        answer = ""
        accumulated: list[str] = []
        try:
            r = requests.post(
                f"{API_BASE}/api/chat/stream",
                json={"message": prompt, "thread_id": st.session_state.thread_id},
                stream=True,
                timeout=120,
            )
            if not r.ok:
                answer = r.json().get("response", "") if r.headers.get("content-type", "").startswith("application/json") else ""
                answer = answer or f"Error: {r.status_code}"
                status_placeholder.empty()
                answer_placeholder.error(answer)
            else:
                for event, data in _read_events(r):
                    if event == "token":
                        accumulated.append(data.get("content", ""))
                        status_placeholder.empty()
                        answer_placeholder.markdown("".join(accumulated))
                    elif event == "tool_start":
                        query = (data.get("arguments") or {}).get("query", "")
                        status_placeholder.caption(f"Searching the knowledge base: {query}")
                        accumulated = []
                    elif event == "done":
                        st.session_state.thread_id = data.get("thread_id") or st.session_state.thread_id
                        answer = data.get("answer", "")
                        status_placeholder.empty()
                        answer_placeholder.markdown(answer)
                        for block in data.get("thinking") or []:
                            with st.expander("Reasoning"):
                                st.markdown(block)
                    elif event == "error":
                        answer = data.get("message", "Unknown error")
                        status_placeholder.empty()
                        answer_placeholder.error(answer)
        except requests.RequestException as e:
            answer = f"Connection failed: {e}"
            status_placeholder.empty()
            answer_placeholder.error(answer)
        st.session_state.messages.append({"role": "assistant", "content": answer or "No answer."})
    del st.session_state["pending_query"]
    st.rerun()

if prompt := st.chat_input("Ask a question about the budget documents"):
    st.session_state.messages.append({"role": "user", "content": prompt})
    st.session_state.pending_query = prompt
    st.rerun()
