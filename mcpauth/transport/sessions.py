"""Push-channel sessions for the MCP endpoint.

A session is created either by opening the event stream first (push-first)
or by posting ``initialize`` first (request-first). Both paths produce the
same object: a UUID4 id, a bounded outbound queue, and the principal that
opened it, if any.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable

from mcpauth.api.deps import Principal
from mcpauth.core.settings import KEEPALIVE_INTERVAL_DEFAULT, SESSION_QUEUE_SIZE_DEFAULT
from mcpauth.crypto.hashing import hash_token
from mcpauth.db.store import AuthStore, StoreError
from mcpauth.oauth.types import AuthSession, utcnow

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": ping\n\n"
ENDPOINT_PATH = "/mcp"


def endpoint_event(session_id: str) -> str:
    return f"event: endpoint\ndata: {ENDPOINT_PATH}?sessionId={session_id}\n\n"


def message_event(message: str) -> str:
    return f"event: message\ndata: {message}\n\n"


class Session:
    """One client's push channel.

    ``send`` never blocks. When the queue is full the oldest queued message
    is discarded to make room, ``dropped`` is incremented and ``send``
    returns False.
    """

    def __init__(
        self,
        session_id: str,
        queue_size: int = SESSION_QUEUE_SIZE_DEFAULT,
        principal: Principal | None = None,
    ) -> None:
        self.id = session_id
        self.principal = principal
        self.created_at = utcnow()
        self.last_used_at = self.created_at
        self.dropped = 0
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._closed = asyncio.Event()
        self._stream_attached = False

    @property
    def user_id(self) -> str | None:
        return self.principal.user_id if self.principal else None

    @property
    def client_id(self) -> str | None:
        return self.principal.client_id if self.principal else None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def stream_attached(self) -> bool:
        return self._stream_attached

    def attach_stream(self) -> bool:
        """Claim the push channel. False if another stream holds it."""
        if self._stream_attached:
            return False
        self._stream_attached = True
        return True

    def detach_stream(self) -> None:
        self._stream_attached = False

    def send(self, message: str) -> bool:
        """Queue an outbound message for the event stream."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(message)
            self.dropped += 1
            logger.warning(
                "session %s queue full; dropped oldest message (%d dropped)",
                self.id,
                self.dropped,
            )
            return False

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._closed.set()

    async def next_message(self) -> str:
        return await self._queue.get()

    async def wait_closed(self) -> None:
        await self._closed.wait()


class SessionManager:
    """Owns every live session for one server process."""

    def __init__(
        self,
        store: AuthStore | None = None,
        queue_size: int = SESSION_QUEUE_SIZE_DEFAULT,
    ) -> None:
        self.store = store
        self.queue_size = queue_size
        self._sessions: dict[str, Session] = {}
        self._cleanup: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    async def create_session(self, principal: Principal | None = None) -> Session:
        session = Session(str(uuid.uuid4()), self.queue_size, principal)
        if principal is not None and self.store is not None:
            await self.store.store_session(
                AuthSession(
                    session_id=session.id,
                    user_id=principal.user_id,
                    client_id=principal.client_id,
                    access_token_hash=hash_token(principal.access_token.token),
                    created_at=session.created_at,
                    last_used_at=session.last_used_at,
                )
            )
        self._sessions[session.id] = session
        logger.debug(
            "session created: session_id=%s user_id=%s",
            session.id,
            session.user_id,
        )
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def _forget(self, session_id: str) -> Session | None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.close()
            logger.debug("session removed: session_id=%s", session_id)
        return session

    def _is_persisted(self, session: Session) -> bool:
        return session.principal is not None and self.store is not None

    async def remove_session(self, session_id: str) -> bool:
        """Close and forget a session. Returns False if it was unknown."""
        session = self._forget(session_id)
        if session is None:
            return False
        if self._is_persisted(session):
            await self.store.delete_session(session_id)
        return True

    def discard_session(self, session_id: str) -> None:
        """Close and forget a session from synchronous cleanup code.

        The persisted record is deleted by a background task; ``close_all``
        waits for pending deletions.
        """
        session = self._forget(session_id)
        if session is None or not self._is_persisted(session):
            return
        task = asyncio.get_running_loop().create_task(
            self._delete_persisted(session_id)
        )
        self._cleanup.add(task)
        task.add_done_callback(self._cleanup.discard)

    async def _delete_persisted(self, session_id: str) -> None:
        try:
            await self.store.delete_session(session_id)
        except StoreError as exc:
            logger.warning("could not delete session %s: %s", session_id, exc)

    async def wait_cleanup(self) -> None:
        if self._cleanup:
            await asyncio.gather(*self._cleanup)

    async def touch(self, session_id: str) -> None:
        """Record that a request on this session just completed."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.last_used_at = utcnow()
        if session.principal is None or self.store is None:
            return
        try:
            await self.store.update_session_last_used(
                session_id, session.last_used_at
            )
        except StoreError as exc:
            logger.warning("could not record last use of %s: %s", session_id, exc)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.remove_session(session_id)
        await self.wait_cleanup()


async def event_stream(
    session: Session,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    keepalive_interval: float = KEEPALIVE_INTERVAL_DEFAULT,
    announce: bool = False,
    on_disconnect: Callable[[], None] | None = None,
) -> AsyncIterator[str]:
    """SSE frames for one session until it is removed or the client leaves.

    Multiplexes queued messages, a keepalive comment every
    ``keepalive_interval`` seconds, and session removal. The stream holds
    the session's push channel while it runs and yields nothing if another
    stream already holds it. When the stream ends for any reason other than
    session removal, ``on_disconnect`` is called.
    """
    if not session.attach_stream():
        logger.warning("session %s already has a live event stream", session.id)
        return

    closed: asyncio.Future[None] | None = None
    getter: asyncio.Future[str] | None = None
    try:
        if announce:
            yield endpoint_event(session.id)
        closed = asyncio.ensure_future(session.wait_closed())
        while True:
            if is_disconnected is not None and await is_disconnected():
                logger.debug("event stream closed by client: %s", session.id)
                return
            if getter is None:
                getter = asyncio.ensure_future(session.next_message())
            done, _ = await asyncio.wait(
                {getter, closed},
                timeout=keepalive_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if closed in done:
                logger.debug("event stream closed (session ended): %s", session.id)
                return
            if getter in done:
                message = getter.result()
                getter = None
                yield message_event(message)
            else:
                yield KEEPALIVE_FRAME
    finally:
        if closed is not None:
            closed.cancel()
        if getter is not None:
            getter.cancel()
        session.detach_stream()
        if on_disconnect is not None and not session.closed:
            on_disconnect()
