"""Story session endpoints: create/read plus every engine operation.

Advancing operations hold the per-session lock; a second concurrent request
for the same session gets 409 instead of queueing.
"""

from fastapi import APIRouter, HTTPException, Request

from taleweaver import engine
from taleweaver.engine import EngineContext, SessionLocks
from taleweaver.engine.state import story_state

from .models import (
    ChooseBody,
    ChooseEndingBody,
    CreateSession,
    EndingsBody,
    RegenerateOptionsBody,
    SelectStoryTypeBody,
    SendMessageBody,
)

router = APIRouter()


def _engine(request: Request) -> EngineContext:
    return request.app.state.engine


def _locks(request: Request) -> SessionLocks:
    return request.app.state.locks


def _require(ctx: EngineContext, session_id: str):
    session = ctx.storage.get_session(session_id)
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


@router.post("/sessions")
async def create_session(body: CreateSession, request: Request):
    """Start a new story session in warm-up."""
    ctx = _engine(request)
    session = ctx.storage.create_session(body.child_id)
    if body.story_title:
        session = ctx.storage.update_session(session.id, story_title=body.story_title)
    ctx.events.log(session.id, "session.created")
    return session


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, request: Request):
    """Session document plus its derived state and busy flag."""
    ctx = _engine(request)
    session = _require(ctx, session_id)
    return {
        "session": session,
        "state": story_state(session),
        "busy": _locks(request).is_busy(session_id),
    }


@router.get("/sessions/{session_id}/messages")
async def get_messages(session_id: str, request: Request):
    """Full message log, oldest first."""
    ctx = _engine(request)
    _require(ctx, session_id)
    return ctx.storage.get_messages(session_id)


@router.get("/sessions/{session_id}/events")
async def get_events(session_id: str, request: Request):
    """Diagnostic event log."""
    ctx = _engine(request)
    _require(ctx, session_id)
    return ctx.storage.get_events(session_id)


@router.get("/sessions/{session_id}/characters")
async def get_characters(session_id: str, request: Request):
    """Supporting characters introduced in this session."""
    ctx = _engine(request)
    session = _require(ctx, session_id)
    return ctx.storage.get_characters(session.supporting_character_ids)


@router.post("/sessions/{session_id}/messages")
async def send_message(session_id: str, body: SendMessageBody, request: Request):
    """Warm-up chat, or the answer to a pending character question."""
    ctx = _engine(request)
    _require(ctx, session_id)
    async with _locks(request).hold(session_id):
        return await engine.send_message(ctx, session_id, body.text)


@router.post("/sessions/{session_id}/story-type")
async def select_story_type(session_id: str, body: SelectStoryTypeBody, request: Request):
    """Pick the story type and run the first beat."""
    ctx = _engine(request)
    _require(ctx, session_id)
    async with _locks(request).hold(session_id):
        return await engine.select_story_type(ctx, session_id, body.story_type_id)


@router.post("/sessions/{session_id}/beat")
async def run_beat(session_id: str, request: Request):
    """Run (or retry) the beat for the current arc step without advancing."""
    ctx = _engine(request)
    _require(ctx, session_id)
    async with _locks(request).hold(session_id):
        return await engine.run_beat(ctx, session_id)


@router.post("/sessions/{session_id}/choices")
async def accept_choice(session_id: str, body: ChooseBody, request: Request):
    """Accept one option of the live options message."""
    ctx = _engine(request)
    _require(ctx, session_id)
    async with _locks(request).hold(session_id):
        return await engine.accept_choice(ctx, session_id, body.options_message_id, body.choice_id)


@router.post("/sessions/{session_id}/options/regenerate")
async def regenerate_options(session_id: str, body: RegenerateOptionsBody, request: Request):
    """Replace the live options with fresh ones for the same arc step."""
    ctx = _engine(request)
    _require(ctx, session_id)
    async with _locks(request).hold(session_id):
        options = await engine.regenerate_options(ctx, session_id, body.options_message_id)
    return {"options": options}


@router.post("/sessions/{session_id}/endings")
async def run_ending(session_id: str, body: EndingsBody, request: Request):
    """Generate candidate endings; preview=true writes nothing."""
    ctx = _engine(request)
    _require(ctx, session_id)
    async with _locks(request).hold(session_id):
        return await engine.run_ending(ctx, session_id, preview=body.preview)


@router.post("/sessions/{session_id}/endings/choose")
async def choose_ending(session_id: str, body: ChooseEndingBody, request: Request):
    """Record the child's chosen ending."""
    ctx = _engine(request)
    _require(ctx, session_id)
    async with _locks(request).hold(session_id):
        return engine.choose_ending(ctx, session_id, body.options_message_id, body.ending_id)


@router.post("/sessions/{session_id}/finalize")
async def finalize(session_id: str, request: Request):
    """Mark the story completed once an ending is chosen."""
    ctx = _engine(request)
    _require(ctx, session_id)
    async with _locks(request).hold(session_id):
        return engine.finalize_session(ctx, session_id)
