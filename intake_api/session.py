"""Per-visitor chat sessions wrapping the conversation state machine."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from intake.conversation import ConversationState, DiscoveryEngine, Message, Phase

logger = logging.getLogger("intake.session")

Clock = Callable[[], datetime]


class SessionError(Exception):
    """Base class for session misuse."""


class SessionClosed(SessionError):
    """The session was torn down."""


class ResponsePending(SessionError):
    """A reply to the previous message has not been delivered yet."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatSession:
    """Runtime of one conversation: the message list plus the delayed replies.

    ``submit`` echoes the visitor message right away and schedules the state
    machine on a snapshot of the current state. The scheduled task is the only
    writer of ``state``; ``close`` cancels it, so nothing is applied after
    teardown. Must be driven from a running event loop.
    """

    def __init__(
        self,
        engine: DiscoveryEngine,
        *,
        session_id: Optional[str] = None,
        delay: float = 0.5,
        clock: Optional[Clock] = None,
        on_complete: Optional[Callable[["ChatSession"], None]] = None,
    ):
        self.id = session_id or uuid4().hex
        self.state = ConversationState()
        self.messages: List[Message] = []
        self._engine = engine
        self._delay = delay
        self._clock = clock or _utcnow
        self._on_complete = on_complete
        self._pending: Optional[asyncio.Task[None]] = None
        self._subscribers: List[asyncio.Queue[Optional[Message]]] = []
        self._closed = False
        self.last_active = time.monotonic()

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def activate(self) -> List[Message]:
        """Handle the chat becoming visible; only the first call emits anything."""
        self._ensure_open()
        self.touch()
        turn = self._engine.activate(self.state)
        self.state = turn.state
        return self._publish(turn.replies)

    def submit(self, text: str) -> Optional[Message]:
        """Accept a visitor utterance. Blank input is ignored and returns ``None``."""
        utterance = (text or "").strip()
        if not utterance:
            return None
        self._ensure_open()
        self.touch()
        if self.pending:
            raise ResponsePending(f"Session {self.id} is still answering the previous message")

        message = Message.user(utterance)
        self._append(message)
        self._pending = asyncio.create_task(self._respond(self.state, utterance))
        return message

    async def _respond(self, snapshot: ConversationState, utterance: str) -> None:
        await asyncio.sleep(self._delay)
        turn = self._engine.transition(snapshot, utterance, now=self._clock())
        self.state = turn.state
        self._publish(turn.replies)
        if turn.state.phase is Phase.COMPLETED and snapshot.phase is not Phase.COMPLETED:
            logger.info("Session %s completed (%s)", self.id, turn.state.escalation_choice or "offline")
            if self._on_complete is not None:
                self._on_complete(self)

    async def wait_idle(self) -> None:
        """Wait until the pending reply, if any, has been delivered or cancelled."""
        task = self._pending
        if task is not None:
            await asyncio.wait({task})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task = self._pending
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
            logger.debug("Session %s closed with a reply pending; reply discarded", self.id)
        for queue in self._subscribers:
            queue.put_nowait(None)

    def subscribe(self) -> asyncio.Queue[Optional[Message]]:
        """Return a queue receiving every new message; ``None`` marks teardown."""
        queue: asyncio.Queue[Optional[Message]] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)
        return queue

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def touch(self) -> None:
        """Record visitor activity; idle sessions are evicted by the store."""
        self.last_active = time.monotonic()

    def unsubscribe(self, queue: asyncio.Queue[Optional[Message]]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosed(f"Session {self.id} is closed")

    def _publish(self, replies) -> List[Message]:
        out = [Message.bot(text) for text in replies]
        for message in out:
            self._append(message)
        return out

    def _append(self, message: Message) -> None:
        self.messages.append(message)
        for queue in self._subscribers:
            queue.put_nowait(message)


class SessionStore:
    """In-memory registry of live sessions. Nothing outlives the process.

    Sessions without activity for ``ttl`` seconds are dropped and closed by
    :meth:`evict_idle`; ``ttl=None`` keeps them until popped.
    """

    def __init__(self, factory: Callable[[], ChatSession], *, ttl: Optional[float] = None):
        self._factory = factory
        self.ttl = ttl
        self._lock = Lock()
        self._sessions: Dict[str, ChatSession] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self) -> ChatSession:
        session = self._factory()
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> ChatSession:
        with self._lock:
            if session_id not in self._sessions:
                raise KeyError(f"Session {session_id} not found")
            return self._sessions[session_id]

    def pop(self, session_id: str) -> ChatSession:
        with self._lock:
            if session_id not in self._sessions:
                raise KeyError(f"Session {session_id} not found")
            return self._sessions.pop(session_id)

    async def evict_idle(self, now: Optional[float] = None) -> List[str]:
        """Close and forget sessions idle for longer than ``ttl``. Returns their ids."""
        if self.ttl is None:
            return []
        cutoff = (time.monotonic() if now is None else now) - self.ttl
        with self._lock:
            expired = [s for s in self._sessions.values() if s.last_active < cutoff and not s.pending]
            for session in expired:
                del self._sessions[session.id]
        for session in expired:
            await session.close()
        if expired:
            logger.info("Evicted %d idle session(s)", len(expired))
        return [s.id for s in expired]

    async def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
