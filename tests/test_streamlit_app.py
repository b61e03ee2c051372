import copy
from pathlib import Path
from urllib.parse import urlsplit

import pytest
import requests
from streamlit.testing.v1 import AppTest

APP_PATH = Path(__file__).resolve().parents[1] / "ui" / "streamlit_app.py"

FIRST_QUESTION = "What type of project are you working on?"
SECOND_QUESTION = "What is your brand name?"


class FakeResponse:
    def __init__(self, status_code: int, payload: dict):
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = str(payload)
        self._payload = copy.deepcopy(payload)

    def json(self) -> dict:
        return self._payload


class FakeBackend:
    """Stands in for the session API behind ``requests.post``/``requests.delete``."""

    def __init__(self):
        self.sessions = {}
        self.calls = []
        self.fail_messages = False
        self._created = 0

    def post(self, url, params=None, json=None, timeout=None):
        path = urlsplit(url).path.strip("/")
        self.calls.append(("POST", path))
        parts = path.split("/")
        if parts == ["sessions"]:
            self._created += 1
            session_id = f"s{self._created}"
            self.sessions[session_id] = {"id": session_id, "started": False, "pending": False, "messages": []}
            return FakeResponse(201, self.sessions[session_id])

        session = self.sessions.get(parts[1])
        if session is None:
            return FakeResponse(404, {"detail": "Session not found"})
        if parts[2] == "activate":
            if not session["started"]:
                session["started"] = True
                session["messages"].append({"role": "bot", "content": FIRST_QUESTION})
            return FakeResponse(200, session)
        if self.fail_messages:
            return FakeResponse(500, {"detail": "boom"})
        session["messages"].append({"role": "user", "content": json["text"]})
        session["messages"].append({"role": "bot", "content": SECOND_QUESTION})
        return FakeResponse(202, session)

    def delete(self, url, timeout=None):
        path = urlsplit(url).path.strip("/")
        self.calls.append(("DELETE", path))
        self.sessions.pop(path.split("/")[1], None)
        return FakeResponse(204, {})


@pytest.fixture
def backend(monkeypatch: pytest.MonkeyPatch) -> FakeBackend:
    fake = FakeBackend()
    monkeypatch.setenv("BACKEND_URL", "http://backend.test")
    monkeypatch.setattr(requests, "post", fake.post)
    monkeypatch.setattr(requests, "delete", fake.delete)
    return fake


def open_app() -> AppTest:
    at = AppTest.from_file(str(APP_PATH), default_timeout=10)
    at.run()
    at.toggle[0].set_value(True).run()
    return at


def shown(at: AppTest) -> list:
    return [element.value for element in at.markdown]


def test_hiding_the_chat_keeps_the_conversation(backend):
    at = open_app()
    assert shown(at) == [FIRST_QUESTION]

    at.toggle[0].set_value(False).run()
    assert shown(at) == []

    at.toggle[0].set_value(True).run()
    assert shown(at) == [FIRST_QUESTION]
    assert backend.calls.count(("POST", "sessions")) == 1
    assert backend.calls.count(("POST", "sessions/s1/activate")) == 2
    assert not [call for call in backend.calls if call[0] == "DELETE"]


def test_message_round_trip(backend):
    at = open_app()
    at.chat_input[0].set_value("Website").run()
    assert shown(at) == [FIRST_QUESTION, "Website", SECOND_QUESTION]


def test_send_error_survives_rerun(backend):
    backend.fail_messages = True
    at = open_app()
    at.chat_input[0].set_value("Website").run()

    assert len(at.error) == 1
    assert "Message failed" in at.error[0].value

    at.run()
    assert len(at.error) == 0


def test_end_chat_tears_down_and_next_open_starts_fresh(backend):
    at = open_app()
    at.button[0].click().run()

    assert ("DELETE", "sessions/s1") in backend.calls
    assert at.toggle[0].value is False
    assert shown(at) == []

    at.toggle[0].set_value(True).run()
    assert ("POST", "sessions/s2/activate") in backend.calls
    assert shown(at) == [FIRST_QUESTION]


def test_expired_session_is_replaced_on_reopen(backend):
    at = open_app()
    at.toggle[0].set_value(False).run()
    backend.sessions.clear()

    at.toggle[0].set_value(True).run()
    assert ("POST", "sessions/s2/activate") in backend.calls
    assert backend.calls.count(("POST", "sessions")) == 2
    assert shown(at) == [FIRST_QUESTION]
