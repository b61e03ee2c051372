import asyncio
import sys
from datetime import datetime
from pathlib import Path

import pytest
import pytz

sys.path.append(str(Path(__file__).resolve().parents[1]))

from intake.conversation import DiscoveryEngine, Phase, Role
from intake.script import DEFAULT_QUESTIONS
from intake_api.session import ChatSession, ResponsePending, SessionClosed, SessionStore

OPEN = pytz.timezone("Europe/Paris").localize(datetime(2024, 1, 17, 14, 0))


def make_session(**kwargs) -> ChatSession:
    kwargs.setdefault("delay", 0)
    kwargs.setdefault("clock", lambda: OPEN)
    return ChatSession(DiscoveryEngine(), **kwargs)


async def say(session: ChatSession, text: str) -> None:
    session.submit(text)
    await session.wait_idle()


@pytest.mark.asyncio
async def test_user_message_is_echoed_before_reply():
    session = make_session(delay=0.05)
    session.activate()

    message = session.submit("  Website  ")
    assert message is not None and message.content == "Website"
    assert session.messages[-1] is message
    assert session.pending

    await session.wait_idle()
    assert not session.pending
    assert session.messages[-1].role is Role.BOT
    assert session.messages[-1].content == DEFAULT_QUESTIONS[1].prompt


@pytest.mark.asyncio
async def test_activation_is_once_per_session():
    session = make_session()
    assert [m.content for m in session.activate()] == [DEFAULT_QUESTIONS[0].prompt]
    assert session.activate() == []
    assert len(session.messages) == 1


@pytest.mark.asyncio
async def test_blank_submission_is_noop():
    session = make_session()
    assert session.submit("   ") is None
    assert session.messages == []
    assert not session.pending


@pytest.mark.asyncio
async def test_submission_while_pending_is_rejected():
    session = make_session(delay=0.05)
    session.submit("first")
    with pytest.raises(ResponsePending):
        session.submit("second")
    await session.wait_idle()
    assert [m.content for m in session.messages if m.role is Role.USER] == ["first"]


@pytest.mark.asyncio
async def test_close_discards_pending_reply():
    session = make_session(delay=0.05)
    session.activate()
    session.submit("Website")
    before = session.state

    await session.close()
    await asyncio.sleep(0.1)

    assert session.state is before
    assert session.messages[-1].content == "Website"
    with pytest.raises(SessionClosed):
        session.submit("again")
    with pytest.raises(SessionClosed):
        session.activate()


@pytest.mark.asyncio
async def test_full_conversation_calls_on_complete_once():
    completed = []
    session = make_session(on_complete=completed.append)
    session.activate()
    for answer in ["Website", "Acme", "Retail", "10k", "Q3", "a@b.c", "talk to a human"]:
        await say(session, answer)

    assert session.state.phase is Phase.COMPLETED
    assert completed == [session]

    await say(session, "thanks")
    assert completed == [session]
    assert session.messages[-1].content == session._engine.script.closed


@pytest.mark.asyncio
async def test_subscribers_receive_messages_and_teardown():
    session = make_session()
    queue = session.subscribe()
    session.activate()
    await say(session, "Website")
    await session.close()

    received = []
    while not queue.empty():
        received.append(queue.get_nowait())
    assert [m.role for m in received[:-1]] == [Role.BOT, Role.USER, Role.BOT]
    assert received[-1] is None


@pytest.mark.asyncio
async def test_store_create_get_pop():
    store = SessionStore(make_session)
    session = store.create()
    assert store.get(session.id) is session
    assert len(store) == 1
    assert store.pop(session.id) is session
    with pytest.raises(KeyError):
        store.get(session.id)


@pytest.mark.asyncio
async def test_store_close_all_closes_sessions():
    store = SessionStore(make_session)
    sessions = [store.create(), store.create()]
    await store.close_all()
    assert len(store) == 0
    assert all(s.closed for s in sessions)


@pytest.mark.asyncio
async def test_store_evicts_idle_sessions():
    store = SessionStore(make_session, ttl=60)
    idle, active = store.create(), store.create()
    queue = idle.subscribe()
    idle.last_active -= 120

    assert await store.evict_idle() == [idle.id]
    assert len(store) == 1
    assert store.get(active.id) is active
    assert idle.closed
    assert queue.get_nowait() is None
    with pytest.raises(KeyError):
        store.get(idle.id)


@pytest.mark.asyncio
async def test_activity_keeps_session_alive():
    store = SessionStore(make_session, ttl=60)
    session = store.create()
    session.last_active -= 120
    session.activate()

    assert await store.evict_idle() == []
    assert store.get(session.id) is session


@pytest.mark.asyncio
async def test_store_without_ttl_never_evicts():
    store = SessionStore(make_session)
    session = store.create()
    assert await store.evict_idle(now=session.last_active + 10_000) == []
    assert len(store) == 1
