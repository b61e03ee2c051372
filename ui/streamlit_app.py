# ui/streamlit_app.py
# ──────────────────────────────────────────────────────────────────────────────
# Lead intake chat widget (Streamlit)
# - Renders the session's message list; all logic lives in the backend
# - The toggle only shows or hides the chat; every open re-sends the activation
#   signal, which the backend answers once per session
# - "End chat" tears the session down; the next open starts a fresh one
# - Input is only accepted while no reply is pending (requests block on wait=true)
#
# Env / Secrets:
#   BACKEND_URL   (e.g., http://localhost:8080)
#
# Run:
#   PYTHONPATH=. streamlit run ui/streamlit_app.py
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import os
from typing import Optional
from urllib.parse import urljoin

import requests
import streamlit as st

# ──────────────────────────────────────────────────────────────────────────────
# Config
# ──────────────────────────────────────────────────────────────────────────────

def _get_secret(key: str, default: str = "") -> str:
    val = os.getenv(key)
    if val:
        return val
    try:
        v = st.secrets.get(key)
        if v:
            return str(v)
    except Exception:
        pass
    return default

BACKEND_URL = _get_secret("BACKEND_URL", "http://localhost:8080").strip().rstrip("/")
REQ_TIMEOUT = float(_get_secret("REQ_TIMEOUT", "15"))

ROLE_AVATARS = {"user": "user", "bot": "assistant"}

st.set_page_config(page_title="Chat", layout="centered")

# ──────────────────────────────────────────────────────────────────────────────
# Backend calls
# ──────────────────────────────────────────────────────────────────────────────

def _url(path: str) -> str:
    return urljoin(BACKEND_URL + "/", path.lstrip("/"))

def _check(resp: requests.Response) -> dict:
    if not resp.ok:
        try:
            detail = resp.json().get("detail")
        except Exception:
            detail = resp.text
        raise RuntimeError(f"{resp.status_code} from backend: {detail}")
    return resp.json()

def create_session() -> dict:
    return _check(requests.post(_url("sessions"), timeout=REQ_TIMEOUT))

def activate_session(session_id: str) -> Optional[dict]:
    """Activate an existing session; None when the backend no longer has it."""
    resp = requests.post(_url(f"sessions/{session_id}/activate"), timeout=REQ_TIMEOUT)
    if resp.status_code in (404, 410):
        return None
    return _check(resp)

def open_chat(chat: Optional[dict]) -> dict:
    if chat is not None:
        refreshed = activate_session(chat["id"])
        if refreshed is not None:
            return refreshed
    return _check(requests.post(_url(f"sessions/{create_session()['id']}/activate"), timeout=REQ_TIMEOUT))

def send_message(session_id: str, text: str) -> dict:
    return _check(
        requests.post(
            _url(f"sessions/{session_id}/messages"),
            params={"wait": "true"},
            json={"text": text},
            timeout=REQ_TIMEOUT,
        )
    )

def close_session(session_id: Optional[str]) -> None:
    if not session_id:
        return
    try:
        requests.delete(_url(f"sessions/{session_id}"), timeout=REQ_TIMEOUT)
    except requests.RequestException:
        pass

# ──────────────────────────────────────────────────────────────────────────────
# Session State
# ──────────────────────────────────────────────────────────────────────────────

if "chat" not in st.session_state:
    st.session_state.chat = None  # latest SessionRead payload
if "was_open" not in st.session_state:
    st.session_state.was_open = False
if "error" not in st.session_state:
    st.session_state.error = None  # shown once, survives st.rerun()

def end_chat() -> None:
    if st.session_state.chat is not None:
        close_session(st.session_state.chat.get("id"))
    st.session_state.chat = None
    st.session_state.chat_open = False
    st.session_state.was_open = False

is_open = st.toggle("💬 Chat", key="chat_open")

if is_open and not st.session_state.was_open:
    try:
        st.session_state.chat = open_chat(st.session_state.chat)
    except Exception as e:
        st.session_state.error = f"❌ Could not start chat: {e}"
st.session_state.was_open = is_open

if st.session_state.error:
    st.error(st.session_state.error)
    st.session_state.error = None

# ──────────────────────────────────────────────────────────────────────────────
# Chat
# ──────────────────────────────────────────────────────────────────────────────

chat = st.session_state.chat
if is_open and chat is not None:
    if not chat["messages"]:
        st.caption("No messages yet. Start a conversation!")
    for m in chat["messages"]:
        with st.chat_message(ROLE_AVATARS.get(m["role"], "assistant")):
            st.write(m["content"])

    st.button("End chat", on_click=end_chat)

    if prompt := st.chat_input("Type a message...", disabled=chat.get("pending", False)):
        with st.chat_message("user"):
            st.write(prompt.strip())
        try:
            with st.spinner(""):
                st.session_state.chat = send_message(chat["id"], prompt)
        except Exception as e:
            st.session_state.error = f"❌ Message failed: {e}"
        st.rerun()
