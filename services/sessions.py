"""In-memory session store owning live interviews for one app instance."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Sequence

from agents.persona_manager import apply_persona
from agents.types import Utterance
from graph.build import EngineDeps, TurnResult, run_turn
from graph.state import CandidateProfile, InterviewObjective, InterviewSession
from observability.logger import log_event

OPENING_LINE = "Welcome, and thanks for joining today. Could you start by telling me a little about yourself?"
CLOSING_LINE = "Thank you for your time today. We'll be in touch about next steps."


class SessionNotFound(KeyError):
    """No live session exists for the given identifier."""


class SessionConcluded(RuntimeError):
    """A turn was submitted to a session that has already ended."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Holds sessions by id and serializes turns within each session.

    Sessions are independent: each has its own lock, and the engine
    collaborators in ``deps`` hold only read-only tables.
    """

    def __init__(self, deps: Optional[EngineDeps] = None, clock: Callable[[], datetime] = _utcnow):
        self.deps = deps or EngineDeps()
        self.clock = clock
        self._sessions: Dict[str, InterviewSession] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def create(
        self,
        *,
        interview_id: str,
        candidate_id: str,
        persona: Optional[str] = None,
        total_minutes: Optional[float] = None,
        objectives: Sequence[InterviewObjective] = (),
        profile: Optional[CandidateProfile] = None,
    ) -> InterviewSession:
        now = self.clock()
        session = self.deps.flow.start_session(
            interview_id=interview_id,
            candidate_id=candidate_id,
            persona=persona,
            total_minutes=total_minutes,
            objectives=objectives,
            profile=profile,
            now=now,
        )
        opening = apply_persona(OPENING_LINE, persona=session.persona, purpose="ask_question")
        self.deps.flow.record_system_utterance(session, opening, question_type="open_ended", now=now)
        with self._guard:
            self._sessions[session.session_id] = session
            self._locks[session.session_id] = threading.Lock()
        log_event("session.start", session.session_id, phase=session.current_phase)
        return session

    def get(self, session_id: str) -> InterviewSession:
        with self._guard:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _lock(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
        if lock is None:
            raise SessionNotFound(session_id)
        return lock

    def submit(self, session_id: str, utterance: Utterance) -> TurnResult:
        with self._lock(session_id):
            session = self.get(session_id)
            if session.ended_at is not None:
                raise SessionConcluded(session_id)
            return run_turn(session, utterance, self.deps)

    def finish(self, session_id: str) -> InterviewSession:
        with self._lock(session_id):
            session = self.get(session_id)
            if session.ended_at is not None:
                return session
            now = max(self.clock(), session.last_activity_at)
            self.deps.flow.end_session(session, now=now)
            closing = apply_persona(CLOSING_LINE, persona=session.persona, purpose="ask_question")
            self.deps.flow.record_system_utterance(session, closing, question_type="closing", now=now)
            log_event("session.end", session.session_id, phase=session.current_phase)
            return session

    def drop(self, session_id: str) -> None:
        with self._guard:
            self._sessions.pop(session_id, None)
            self._locks.pop(session_id, None)


__all__ = ["CLOSING_LINE", "OPENING_LINE", "SessionConcluded", "SessionNotFound", "SessionStore"]
