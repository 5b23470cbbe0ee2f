"""Session reconciliation controller.

Coordinates the background flows (list sessions, fetch messages) with the
foreground ones (create/select a session, send a message and stream the
reply). Everything runs on one event loop, so there are no data races, but
the awaits interleave: a session-list refresh that started before a new
session was created can resolve after it. The ``PendingSessionGuard`` stops
such a stale refresh from resetting the active session or its messages.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from voxstream.config import DEFAULT_SPACE_ID, VoxStreamConfig
from voxstream.exceptions import SessionCreateError, VoxStreamError
from voxstream.session.cache import ToggledFilesCache
from voxstream.session.guard import PendingSessionGuard, SessionPhase
from voxstream.session.models import (
    ChatMessage,
    ChatSession,
    ReasoningData,
    session_title,
)
from voxstream.session.wire import Wire
from voxstream.stream.frames import AgentEvent
from voxstream.stream.transport import build_request

if TYPE_CHECKING:
    from voxstream.session.store import SessionStore
    from voxstream.stream.transport import AgentStreamClient

logger = logging.getLogger(__name__)


class SessionController:
    """Owns the session list, the active session and its messages.

    Args:
        store: Persistence collaborator.
        client: Streaming client for the agent service.
        config: Settings (user id, space id, model, settle delay).
        wire: Optional event bus that front ends subscribe to.
        toggled_files: Optional cache of files toggled into the query context.
    """

    def __init__(
        self,
        store: SessionStore,
        client: AgentStreamClient,
        config: VoxStreamConfig | None = None,
        wire: Wire | None = None,
        toggled_files: ToggledFilesCache | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._config = config or VoxStreamConfig()
        self._wire = wire or Wire()
        self._toggled_files = toggled_files or ToggledFilesCache()

        self.guard = PendingSessionGuard()
        self.sessions: list[ChatSession] = []
        self.active_session_id: str | None = None
        self.messages: list[ChatMessage] = []
        self.active_file_id: str | None = None

        self.is_streaming = False
        self.streaming_content = ""
        self._sending = False

        # Recovered sidecar channels, keyed by message id
        self.reasoning: dict[str, ReasoningData] = {}
        self.events: dict[str, list[AgentEvent]] = {}

        self._settle_task: asyncio.Task[None] | None = None

    @property
    def user_id(self) -> str | None:
        return self._config.session.user_id

    @property
    def space_id(self) -> str | None:
        return self._config.session.space_id

    @property
    def active_session(self) -> ChatSession | None:
        if self.active_session_id is None:
            return None
        return next((s for s in self.sessions if s.id == self.active_session_id), None)

    # --- Background refresh ---

    async def refresh_sessions(self) -> list[ChatSession]:
        """Reload the session list and reconcile the active session with it."""
        if not self.user_id:
            logger.warning("Cannot refresh sessions: user id is missing")
            return self.sessions

        started = self.guard.generation
        try:
            sessions = await self._store.list_sessions(self.user_id, self.space_id)
        except Exception as e:
            logger.error("Error fetching chat sessions: %s", e)
            self._wire.send_error(f"Could not load sessions: {e}")
            return self.sessions

        stale = self.guard.generation != started
        if stale:
            # The list was read before a newer transition; keep what it added.
            fetched = {s.id for s in sessions}
            sessions = [s for s in self.sessions if s.id not in fetched] + sessions

        self.sessions = sessions
        self._wire.send_sessions_changed(len(sessions))

        if stale or self.guard.in_transition:
            logger.info(
                "Skipping session reset due to pending transition %s",
                self.guard.session_id,
            )
            return self.sessions

        active = self.active_session_id
        if active:
            if any(s.id == active for s in sessions):
                await self.fetch_messages(active)
            else:
                logger.info("Active session %s no longer exists, resetting", active)
                self._set_active(None)
                self._set_messages([])

        return self.sessions

    async def fetch_messages(self, session_id: str) -> None:
        """Load messages for ``session_id`` if it is still the active session."""
        if not session_id:
            return

        try:
            messages = await self._store.list_messages(session_id)
        except Exception as e:
            logger.error("Error fetching messages for %s: %s", session_id, e)
            self._wire.send_error(f"Could not load messages: {e}")
            return

        if session_id != self.active_session_id:
            logger.debug("Discarding messages for inactive session %s", session_id)
            return

        for message in messages:
            self._absorb_sidecars(message)
        self._set_messages(messages)

    # --- Foreground transitions ---

    async def create_session(self, first_message: str | None = None) -> ChatSession:
        """Persist a new session and make it active with the guard armed.

        If another transition (select, leave) takes over while the store
        call is in flight, the new session is listed but not activated.

        Raises:
            SessionCreateError: Carries ``first_message`` so it can be restored.
        """
        unsent = first_message or ""
        if not self.user_id:
            raise SessionCreateError(unsent, "user id is missing")
        if self.guard.phase is SessionPhase.CREATING:
            raise SessionCreateError(unsent, "another session is being created")

        self._cancel_settle()
        generation = self.guard.begin_create()
        title = session_title(first_message, self._config.session.title_length)
        try:
            session = await self._store.create_session(
                self.user_id, self.space_id or DEFAULT_SPACE_ID, title
            )
        except asyncio.CancelledError:
            self.guard.abort_create(generation)
            raise
        except Exception as e:
            self.guard.abort_create(generation)
            logger.error("Error creating chat session: %s", e)
            raise SessionCreateError(unsent, str(e)) from e

        if session is None:
            self.guard.abort_create(generation)
            raise SessionCreateError(unsent, "store returned no session")

        self.sessions.insert(0, session)
        self._wire.send_sessions_changed(len(self.sessions))
        if not self.guard.is_current(generation):
            logger.info("Session %s created after the user moved on", session.id)
            raise SessionCreateError(unsent, "superseded by another session change")

        # Armed before any message fetch can observe the new id.
        self.guard.arm(session.id)
        self._set_active(session.id)
        logger.info("Created session %s (%s)", session.id, session.title)
        self._wire.send_status(f"New session: {session.title}")
        return session

    async def select_session(self, session: ChatSession) -> None:
        """Switch to an existing session and load its messages."""
        self._cancel_settle()
        self.guard.arm(session.id)
        if all(s.id != session.id for s in self.sessions):
            self.sessions.insert(0, session)
        self._set_active(session.id)
        self._set_messages([])
        try:
            await self.fetch_messages(session.id)
        finally:
            self._settle(session.id)

    def leave_session(self) -> None:
        """Go back to the home view with no active session.

        Any transition in flight is dropped, so a reply still streaming for
        the old session will not pull it back on screen.
        """
        self._cancel_settle()
        self.guard.abandon()
        self._set_active(None)
        self._set_messages([])

    async def send_message(
        self, text: str, cancel: asyncio.Event | None = None
    ) -> ChatMessage | None:
        """Send a user message and stream the assistant reply.

        Creates a session first when none is active. Returns the assistant
        message, or None if nothing was sent or the reply was empty.

        Raises:
            SessionCreateError: The message could not be sent (session
                creation failed, or another send is still in flight); the
                error carries the unsent text.
        """
        text = text.strip()
        if not text:
            return None
        if self._sending or self.is_streaming:
            raise SessionCreateError(text, "another message is still being sent")

        self._sending = True
        try:
            return await self._send(text, cancel)
        finally:
            self._sending = False

    def toggle_file(self, file_id: str) -> bool:
        """Toggle a file into or out of the query context. Returns the new state."""
        if not self.user_id:
            return False
        return self._toggled_files.toggle(self.user_id, file_id)

    def toggle_reasoning(self, message_id: str) -> bool | None:
        """Flip reasoning visibility for a message. None if it has no reasoning."""
        data = self.reasoning.get(message_id)
        if data is None:
            return None
        data.visible = not data.visible
        return data.visible

    async def wait_settled(self) -> None:
        """Wait for a pending settle timer, if any, to finish."""
        task = self._settle_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def aclose(self) -> None:
        self._cancel_settle()

    # --- Internals ---

    async def _send(
        self, text: str, cancel: asyncio.Event | None
    ) -> ChatMessage | None:
        session = self.active_session
        if session is None:
            session = await self.create_session(text)
            user_message = self._new_message(session, text, is_user=True)
            self._set_messages([user_message])
        else:
            self._cancel_settle()
            self.guard.arm(session.id)
            user_message = self._new_message(session, text, is_user=True)
            self._set_messages([*self.messages, user_message])

        try:
            if not await self._save(user_message):
                logger.error("Failed to save user message to store")
            return await self._stream_reply(session, user_message, cancel)
        finally:
            # Also on cancellation, so the guard never stays armed.
            self._settle(session.id)

    async def _stream_reply(
        self,
        session: ChatSession,
        user_message: ChatMessage,
        cancel: asyncio.Event | None,
    ) -> ChatMessage | None:
        self.is_streaming = True
        self.streaming_content = ""
        self._wire.send_stream_begin(session.id)
        final = ""

        def on_chunk(composed: str) -> None:
            nonlocal final
            final = composed
            self.streaming_content = composed
            self._wire.send_chunk(session.id, composed)

        service = self._config.service
        try:
            request = build_request(
                query=user_message.content,
                model_name=service.resolved_model(),
                top_k=service.top_k,
                user_id=self.user_id,
                space_id=session.space_id,
                active_file_id=self.active_file_id,
                filter=self._request_filter(),
            )
            final = await self._client.stream(request, on_chunk, cancel=cancel)
        except VoxStreamError as e:
            logger.error("Error streaming response: %s", e)
            self._wire.send_error(str(e))
        finally:
            self.is_streaming = False
            self.streaming_content = ""
            self._wire.send_stream_end(session.id)
            # Keep the reply's session on screen unless the user has moved on.
            if self.active_session_id != session.id and self.guard.holds(session.id):
                self._set_active(session.id)

        if not final.strip():
            logger.warning("Stream content is empty, not saving response")
            return None

        reply = self._new_message(session, final, is_user=False)
        if not await self._save(reply):
            logger.error("Failed to save assistant reply to store")

        if self.active_session_id == session.id:
            self._absorb_sidecars(reply)
            self._set_messages([*self.messages, reply])
        return reply

    def _settle(self, session_id: str) -> None:
        generation = self.guard.settle(session_id)
        if generation is None:
            return
        self._cancel_settle()
        self._settle_task = asyncio.get_running_loop().create_task(
            self._release_after_delay(session_id, generation)
        )

    async def _release_after_delay(self, session_id: str, generation: int) -> None:
        await asyncio.sleep(self._config.session.settle_delay)
        if self.guard.release(session_id, generation):
            logger.info("Cleared pending session transition %s", session_id)
            self._wire.send_guard_released(session_id)

    def _cancel_settle(self) -> None:
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = None

    def _absorb_sidecars(self, message: ChatMessage) -> None:
        if message.is_user:
            return
        extracted = message.strip_sidecars()
        if extracted is None:
            return
        if extracted.reasoning:
            previous = self.reasoning.get(message.id)
            self.reasoning[message.id] = ReasoningData(
                content=extracted.reasoning.strip(),
                visible=previous.visible if previous else False,
            )
        if extracted.events:
            self.events[message.id] = extracted.events

    async def _save(self, message: ChatMessage) -> bool:
        try:
            await self._store.save_message(message)
        except Exception as e:
            logger.error("Error saving message: %s", e)
            return False
        return True

    def _new_message(
        self, session: ChatSession, content: str, is_user: bool
    ) -> ChatMessage:
        return ChatMessage(
            session_id=session.id,
            space_id=session.space_id,
            user_id=self.user_id or "",
            content=content,
            is_user=is_user,
        )

    def _request_filter(self) -> dict[str, list[str]] | None:
        if not self.user_id:
            return None
        files = self._toggled_files.get(self.user_id)
        return {"file_ids": files} if files else None

    def _set_active(self, session_id: str | None) -> None:
        if session_id == self.active_session_id:
            return
        self.active_session_id = session_id
        self._wire.send_session_active(session_id)

    def _set_messages(self, messages: list[ChatMessage]) -> None:
        self.messages = messages
        self._wire.send_messages_changed(self.active_session_id, len(messages))
