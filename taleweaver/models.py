"""Core domain models.

All engine operations and storage functions operate on these types.
Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Phase = Literal[
    "warmup",
    "type_selected",
    "arc_stepping",
    "ending",
    "completed",
]

Sender = Literal["child", "assistant"]

MessageKind = Literal[
    "plain",
    "beat_continuation",
    "beat_options",
    "child_choice",
    "character_traits_question",
    "character_traits_answer",
    "ending_options",
    "child_ending_choice",
]

OPTIONS_KINDS = ("beat_options", "ending_options")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Choice(BaseModel):
    """An option the player may pick."""

    id: str
    text: str
    introduces_character: bool = False
    new_character_name: str | None = None
    new_character_label: str | None = None
    new_character_kind: str | None = None
    existing_character_id: str | None = None


class Message(BaseModel):
    """A single entry in a session's append-only message log."""

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    seq: int
    sender: Sender
    kind: MessageKind = "plain"
    text: str
    options: list[Choice] | None = None  # options kinds only
    selected_option_id: str | None = None  # child choices only
    options_message_id: str | None = None  # child choices only
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _options_only_on_options_kinds(self) -> Message:
        if self.options is not None and self.kind not in OPTIONS_KINDS:
            raise ValueError(f"options are not allowed on {self.kind!r} messages")
        if self.kind in OPTIONS_KINDS and self.options is None:
            raise ValueError(f"{self.kind!r} messages require options")
        return self

    def choice(self, choice_id: str) -> Choice | None:
        for c in self.options or []:
            if c.id == choice_id:
                return c
        return None


class Character(BaseModel):
    """A supporting character introduced mid-story by a choice."""

    id: str
    owner_child_id: str
    session_id: str
    name: str
    role: str = "Friend"
    label: str | None = None
    traits: list[str] = Field(default_factory=list)
    introduced_from_option_id: str | None = None
    introduced_from_message_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    traits_last_updated_at: datetime | None = None


class ArcTemplate(BaseModel):
    steps: list[str] = Field(min_length=1)


class StoryType(BaseModel):
    """Narrative template that fixes the arc steps of a story."""

    id: str
    name: str
    default_phase_id: str
    ending_phase_id: str | None = None
    arc_template: ArcTemplate
    tags: list[str] = Field(default_factory=list)
    age_range: str = ""

    @property
    def last_arc_step_index(self) -> int:
        return len(self.arc_template.steps) - 1

    def arc_step(self, index: int) -> str:
        return self.arc_template.steps[min(max(index, 0), self.last_arc_step_index)]


class PendingCharacterTraits(BaseModel):
    """The TraitsGate: an open question about a newly introduced character."""

    character_id: str
    character_label: str
    question_text: str
    asked_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """One story attempt."""

    id: str
    child_id: str
    phase: Phase = "warmup"
    story_type_id: str | None = None
    story_type_name: str | None = None
    story_phase_id: str | None = None
    ending_phase_id: str | None = None
    story_title: str | None = None
    arc_step_index: int = Field(default=0, ge=0)
    pending_character_traits: PendingCharacterTraits | None = None
    supporting_character_ids: list[str] = Field(default_factory=list)
    selected_ending_id: str | None = None
    selected_ending_text: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _gate_only_while_stepping(self) -> Session:
        if self.pending_character_traits is not None and self.phase != "arc_stepping":
            raise ValueError(
                f"a character traits question cannot be pending in phase {self.phase!r}"
            )
        return self

    @property
    def gate_open(self) -> bool:
        return self.pending_character_traits is not None

    @property
    def has_story_type(self) -> bool:
        return bool(self.story_type_id and self.story_phase_id)


class SessionEvent(BaseModel):
    """Diagnostic entry in a session's event log."""

    event: str
    status: Literal["info", "started", "completed", "error"] = "info"
    source: Literal["engine", "api"] = "engine"
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
