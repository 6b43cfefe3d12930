"""Generation client: one structured LLM call per story stage.

Every call is request/response: build a prompt from stored session state,
call the LLM, parse JSON into a typed result. Calls never raise for
generation problems; they return a result with ok=False and an
error_message instead, so callers decide how to degrade.

Timeouts stop *waiting*, they do not stop the work: the LLM call runs in a
shielded task and keeps going after the local timeout fires. A late result
is logged and dropped; the client itself never writes to storage.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from taleweaver.llm import LLM, LLMError
from taleweaver.models import Choice, Session, StoryType
from taleweaver.prompts import PromptError, build_context, render_prompt, template_for
from taleweaver.storage import Storage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Raw model output schemas
# ---------------------------------------------------------------------------

class _BeatOption(BaseModel):
    id: str
    text: str
    introduces_character: bool = Field(
        default=False, validation_alias=AliasChoices("introducesCharacter", "introduces_character")
    )
    new_character_name: str | None = Field(
        default=None, validation_alias=AliasChoices("newCharacterName", "new_character_name")
    )
    new_character_label: str | None = Field(
        default=None, validation_alias=AliasChoices("newCharacterLabel", "new_character_label")
    )
    new_character_kind: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "newCharacterType", "newCharacterKind", "new_character_kind"
        ),
    )
    existing_character_id: str | None = Field(
        default=None, validation_alias=AliasChoices("existingCharacterId", "existing_character_id")
    )

    def to_choice(self) -> Choice:
        return Choice(**self.model_dump())


class _BeatOutput(BaseModel):
    story_continuation: str = Field(
        min_length=1, validation_alias=AliasChoices("storyContinuation", "story_continuation")
    )
    options: list[_BeatOption] = Field(min_length=3, max_length=3)


class _TraitsOutput(BaseModel):
    question: str = Field(min_length=1)
    suggested_traits: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("suggestedTraits", "suggested_traits")
    )


class EndingOption(BaseModel):
    id: str
    text: str


class _EndingOutput(BaseModel):
    endings: list[EndingOption] = Field(min_length=3, max_length=3)


# ---------------------------------------------------------------------------
# Results consumed by the engine
# ---------------------------------------------------------------------------

class GenerationResult(BaseModel):
    ok: bool
    error_message: str | None = None


class WarmupReplyResult(GenerationResult):
    assistant_text: str = ""


class StoryBeatResult(GenerationResult):
    story_continuation: str = ""
    options: list[Choice] = Field(default_factory=list)
    arc_step: str | None = None
    arc_step_index: int | None = None


class TraitsQuestionResult(GenerationResult):
    question: str = ""
    suggested_traits: list[str] = Field(default_factory=list)


class StoryEndingResult(GenerationResult):
    endings: list[EndingOption] = Field(default_factory=list)
    story_type_id: str | None = None
    arc_step: str | None = None


class GenerationFailure(Exception):
    """Internal: a stage could not produce a usable result."""


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_json_object(text: str) -> dict[str, Any]:
    """Extract the JSON object from model output, tolerating code fences
    and chatter around the braces."""
    cleaned = _FENCE_RE.sub("", text.strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise GenerationFailure("Model output contains no JSON object")
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise GenerationFailure(f"Model returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise GenerationFailure("Model JSON must be an object")
    return data


class GenerationClient:
    """Stateless generation calls against a hosted model.

    Args:
        storage:        Read-only access to sessions, messages, characters.
        llm:            Callable matching taleweaver.llm.LLM.
        timeout:        Seconds to wait for one LLM call before giving up.
        recent_messages: How many trailing messages go into the transcript.
        prompts:        Per-stage template overrides (config "prompts").
    """

    def __init__(
        self,
        storage: Storage,
        llm: LLM,
        *,
        timeout: float = 90.0,
        recent_messages: int = 12,
        prompts: dict[str, str] | None = None,
    ) -> None:
        self._storage = storage
        self._llm = llm
        self._timeout = timeout
        self._recent = recent_messages
        self._prompts = prompts or {}
        self._inflight: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, storage: Storage, llm: LLM, config: dict[str, Any]) -> GenerationClient:
        return cls(
            storage,
            llm,
            timeout=float(config.get("generation_timeout", 90.0)),
            recent_messages=int(config.get("recent_message_count", 12)),
            prompts=config.get("prompts"),
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _call(self, stage: str, session_id: str, prompt: str) -> str:
        """Run one LLM call, waiting at most `timeout` seconds for it."""
        task = asyncio.ensure_future(self._llm(stage, prompt))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await asyncio.wait_for(asyncio.shield(task), self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "generation timed out stage=%s session=%s after %ss; upstream call continues",
                stage, session_id, self._timeout,
            )
            task.add_done_callback(lambda t: _log_late_result(stage, session_id, t))
            raise GenerationFailure(f"{stage} timed out after {self._timeout}s")
        except LLMError as e:
            raise GenerationFailure(str(e)) from e
        except Exception as e:
            logger.exception("generation call crashed stage=%s session=%s", stage, session_id)
            raise GenerationFailure(f"{stage} failed: {e}") from e

    def _render(self, stage: str, context: dict[str, Any]) -> str:
        try:
            return render_prompt(template_for(stage, self._prompts), context)
        except PromptError as e:
            raise GenerationFailure(f"Prompt template error ({stage}): {e}") from e

    def _load(self, session_id: str, *, require_story_type: bool) -> tuple[Session, StoryType | None]:
        session = self._storage.get_session(session_id)
        if session is None:
            raise GenerationFailure(f"Session with id {session_id} not found.")
        if not require_story_type:
            return session, None
        if not session.has_story_type:
            raise GenerationFailure(
                "Session is missing one or more required fields: story_type_id, story_phase_id."
            )
        story_type = self._storage.get_story_type(session.story_type_id)
        if story_type is None:
            raise GenerationFailure(f"StoryType with id {session.story_type_id} not found.")
        return session, story_type

    def _context(self, session: Session, story_type: StoryType | None, **extra: Any) -> dict[str, Any]:
        messages = self._storage.get_messages(session.id)
        messages = messages[-self._recent:] if self._recent > 0 else []
        characters = self._storage.get_characters(session.supporting_character_ids)
        return build_context(session, messages, story_type, characters, **extra)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def warmup_reply(self, session_id: str) -> WarmupReplyResult:
        try:
            session, _ = self._load(session_id, require_story_type=False)
            prompt = self._render("warmup_reply", self._context(session, None))
            text = (await self._call("warmup_reply", session_id, prompt)).strip()
            if not text:
                raise GenerationFailure("Model returned an empty reply")
        except GenerationFailure as e:
            return WarmupReplyResult(ok=False, error_message=str(e))
        return WarmupReplyResult(ok=True, assistant_text=text)

    async def story_beat(self, session_id: str) -> StoryBeatResult:
        try:
            session, story_type = self._load(session_id, require_story_type=True)
            prompt = self._render("story_beat", self._context(session, story_type))
            raw = await self._call("story_beat", session_id, prompt)
            output = _validate(_BeatOutput, parse_json_object(raw))
        except GenerationFailure as e:
            return StoryBeatResult(ok=False, error_message=str(e))
        index = min(session.arc_step_index, story_type.last_arc_step_index)
        return StoryBeatResult(
            ok=True,
            story_continuation=output.story_continuation,
            options=[o.to_choice() for o in output.options],
            arc_step=story_type.arc_step(index),
            arc_step_index=index,
        )

    async def character_traits_question(
        self, session_id: str, character_id: str
    ) -> TraitsQuestionResult:
        try:
            session, story_type = self._load(session_id, require_story_type=True)
            character = self._storage.get_character(character_id)
            if character is None:
                raise GenerationFailure(f"Character with id {character_id} not found.")
            ctx = self._context(session, story_type, character=character)
            raw = await self._call("character_traits", session_id, self._render("character_traits", ctx))
            output = _validate(_TraitsOutput, parse_json_object(raw))
        except GenerationFailure as e:
            return TraitsQuestionResult(ok=False, error_message=str(e))
        traits = [t.strip() for t in output.suggested_traits if t.strip()]
        return TraitsQuestionResult(ok=True, question=output.question, suggested_traits=traits)

    async def story_ending(self, session_id: str) -> StoryEndingResult:
        try:
            session, story_type = self._load(session_id, require_story_type=True)
            prompt = self._render("story_ending", self._context(session, story_type))
            raw = await self._call("story_ending", session_id, prompt)
            output = _validate(_EndingOutput, parse_json_object(raw))
        except GenerationFailure as e:
            return StoryEndingResult(ok=False, error_message=str(e))
        return StoryEndingResult(
            ok=True,
            endings=output.endings,
            story_type_id=story_type.id,
            arc_step=story_type.arc_step(session.arc_step_index),
        )


def _validate(schema: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise GenerationFailure(
            f"Model JSON does not match expected shape: {e.error_count()} error(s)"
        ) from e


def _log_late_result(stage: str, session_id: str, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    if task.exception() is not None:
        logger.info("late %s call for session=%s failed: %s", stage, session_id, task.exception())
    else:
        logger.info("late %s result for session=%s discarded", stage, session_id)
