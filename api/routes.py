"""FastAPI routes for interview session control."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from agents.flow_manager import build_objective
from agents.types import Utterance
from api.schemas import (
    ApiResp,
    FinishReq,
    QuestionPayload,
    SessionSnapshot,
    StartReq,
    TopicSummary,
    TurnReq,
    UIMessage,
)
from graph.build import TurnResult
from graph.state import InterviewSession
from services.sessions import SessionConcluded, SessionNotFound, SessionStore


router = APIRouter(prefix="/api/interview-sessions")


def get_store(request: Request) -> SessionStore:
    """Return the store bound to this app instance, creating it on first use."""

    store = getattr(request.app.state, "sessions", None)
    if store is None:
        store = SessionStore()
        request.app.state.sessions = store
    return store


def _last_system_text(session: InterviewSession) -> Optional[str]:
    for message in reversed(session.messages):
        if message.role == "system":
            return message.text
    return None


def _resp(session: InterviewSession, store: SessionStore, result: Optional[TurnResult] = None) -> ApiResp:
    text = result.response if result else _last_system_text(session)
    question = None
    if result is not None and result.plan is not None:
        question = QuestionPayload(
            text=result.response,
            question_type=result.plan.question_type,
            intent=result.plan.intent,
            difficulty=result.plan.difficulty,
            follow_up_types=list(result.plan.follow_up_types),
        )
    elif text and not session.ended_at:
        question = QuestionPayload(text=text)

    return ApiResp(
        session_id=session.session_id,
        phase=session.current_phase,
        ui_messages=[UIMessage(text=text)] if text else [],
        question=question,
        source=result.source if result else None,
        confidence=result.confidence if result else None,
        cues=list(result.flow.cues) if result and result.flow else [],
        decisions=list(result.flow.decisions) if result and result.flow else [],
        recommendations=list(result.recommendations) if result else [],
        remaining_minutes=session.remaining_minutes(max(store.clock(), session.last_activity_at)),
        error=result.error.model_dump(mode="json", exclude={"last_known_good"}) if result and result.error else None,
        event_log=list(session.events),
    )


def _load(store: SessionStore, session_id: str) -> InterviewSession:
    try:
        return store.get(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="session not found")


@router.post("/start", response_model=ApiResp)
def start(req: StartReq, store: SessionStore = Depends(get_store)) -> ApiResp:
    try:
        objectives = [build_objective(**item.model_dump()) for item in req.objectives]
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    session = store.create(
        interview_id=req.interview_id,
        candidate_id=req.candidate_id,
        persona=req.persona_override,
        total_minutes=req.total_minutes,
        objectives=objectives,
        profile=req.profile,
    )
    return _resp(session, store)


@router.post("/turn", response_model=ApiResp)
def turn(req: TurnReq, store: SessionStore = Depends(get_store)) -> ApiResp:
    session = _load(store, req.session_id)
    utterance = Utterance(
        role="candidate",
        text=req.user_msg,
        timestamp=max(store.clock(), session.last_activity_at),
        entities=tuple(req.entities),
        sentiment=req.sentiment,
    )
    try:
        result = store.submit(req.session_id, utterance)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="session not found")
    except SessionConcluded:
        raise HTTPException(status_code=409, detail="session has ended")
    return _resp(result.session, store, result)


@router.get("/{session_id}", response_model=SessionSnapshot)
def snapshot(session_id: str, store: SessionStore = Depends(get_store)) -> SessionSnapshot:
    session = _load(store, session_id)
    topics: List[TopicSummary] = [
        TopicSummary(
            label=node.label,
            phase=node.phase,
            depth=node.depth,
            responses=len(node.responses),
            transition_potential=node.transition_potential,
        )
        for node in session.topics
    ]
    return SessionSnapshot(
        session_id=session.session_id,
        interview_id=session.interview_id,
        candidate_id=session.candidate_id,
        persona=session.persona,
        phase=session.current_phase,
        concluded=session.concluded,
        ended=session.ended_at is not None,
        remaining_minutes=session.remaining_minutes(max(store.clock(), session.last_activity_at)),
        phase_progress=session.phase_progress,
        metrics=session.metrics,
        objectives=list(session.objectives),
        topics=topics,
        transitions=list(session.transitions),
        messages=len(session.messages),
    )


@router.post("/finish", response_model=ApiResp)
def finish(req: FinishReq, store: SessionStore = Depends(get_store)) -> ApiResp:
    _load(store, req.session_id)
    session = store.finish(req.session_id)
    return _resp(session, store)
