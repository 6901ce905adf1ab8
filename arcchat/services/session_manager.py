# This module keeps conversation state and the in-flight guard per session.
# Date: 2025-10-02
# Version: 0.2.0

import asyncio
from typing import Dict
from uuid import uuid4

from arcchat.core.errors import SessionBusyError
from arcchat.models.common import Conversation
from arcchat.utils.logger import console

class SessionManager:
    """
    Holds conversations in memory and makes sure only one agentic turn per
    session streams at a time. Each running turn owns a cancel event that
    `cancel()` fires.
    """

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._in_flight: Dict[str, asyncio.Event] = {}

    def new_session(self) -> str:
        session_id = str(uuid4())
        self._conversations[session_id] = Conversation(session_id=session_id)
        console.info(f"New session created: {session_id}")
        return session_id

    def get_conversation(self, session_id: str) -> Conversation:
        """Returns the session's conversation, creating an empty one if needed."""
        conversation = self._conversations.get(session_id)
        if conversation is None:
            console.info(f"Session '{session_id}' not found. Creating a new one.")
            conversation = Conversation(session_id=session_id)
            self._conversations[session_id] = conversation
        return conversation

    def is_streaming(self, session_id: str) -> bool:
        return session_id in self._in_flight

    def begin_turn(self, session_id: str) -> asyncio.Event:
        """
        Marks a turn as in flight and returns its cancel event.

        Raises:
            SessionBusyError: If a turn is already streaming for this session.
        """
        if session_id in self._in_flight:
            raise SessionBusyError(session_id)
        cancel = asyncio.Event()
        self._in_flight[session_id] = cancel
        return cancel

    def end_turn(self, session_id: str):
        self._in_flight.pop(session_id, None)

    def cancel(self, session_id: str) -> bool:
        """Fires the cancel event of the running turn. Returns False if none is running."""
        cancel = self._in_flight.get(session_id)
        if cancel is None:
            return False
        console.warning(f"Cancelling the running turn of session '{session_id}'.")
        cancel.set()
        return True

    def reset(self):
        self._conversations.clear()
        self._in_flight.clear()

session_manager = SessionManager()
