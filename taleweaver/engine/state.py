"""Explicit story state machine.

A session's progression state is the pair (phase, gate). It is exposed as a
tagged union so that combinations like an open gate outside arc stepping
cannot be expressed:

    Warmup | TypeSelected | ArcStepping(gate) | Ending | Completed

Transitions (event → target phase):

    warmup         --select_type-->      type_selected
    type_selected  --select_type-->      type_selected   (re-pick before first beat)
    type_selected  --first_beat-->       arc_stepping
    arc_stepping   --present_endings-->  ending          (gate closed, last arc step)
    ending         --present_endings-->  ending          (endings re-rolled)
    ending         --finalize-->         completed
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from taleweaver.models import PendingCharacterTraits, Phase, Session, StoryType

from .errors import InvalidTransitionError, TraitsGateOpenError

Event = Literal["select_type", "first_beat", "present_endings", "finalize"]


class _State(BaseModel):
    model_config = ConfigDict(frozen=True)


class Warmup(_State):
    phase: Literal["warmup"] = "warmup"


class TypeSelected(_State):
    phase: Literal["type_selected"] = "type_selected"
    story_type_id: str


class ArcStepping(_State):
    phase: Literal["arc_stepping"] = "arc_stepping"
    arc_step_index: int
    gate: PendingCharacterTraits | None = None

    @property
    def gate_open(self) -> bool:
        return self.gate is not None


class Ending(_State):
    phase: Literal["ending"] = "ending"
    arc_step_index: int


class Completed(_State):
    phase: Literal["completed"] = "completed"
    selected_ending_id: str | None = None


StoryState = Annotated[
    Union[Warmup, TypeSelected, ArcStepping, Ending, Completed],
    Field(discriminator="phase"),
]

_adapter: TypeAdapter[StoryState] = TypeAdapter(StoryState)

TRANSITIONS: dict[tuple[Phase, Event], Phase] = {
    ("warmup", "select_type"): "type_selected",
    ("type_selected", "select_type"): "type_selected",
    ("type_selected", "first_beat"): "arc_stepping",
    ("arc_stepping", "present_endings"): "ending",
    ("ending", "present_endings"): "ending",
    ("ending", "finalize"): "completed",
}


def story_state(session: Session) -> StoryState:
    """Project a stored session onto its tagged state."""
    data: dict = {"phase": session.phase}
    if session.phase == "type_selected":
        data["story_type_id"] = session.story_type_id or ""
    elif session.phase == "arc_stepping":
        data["arc_step_index"] = session.arc_step_index
        data["gate"] = session.pending_character_traits
    elif session.phase == "ending":
        data["arc_step_index"] = session.arc_step_index
    elif session.phase == "completed":
        data["selected_ending_id"] = session.selected_ending_id
    return _adapter.validate_python(data)


def next_phase(session: Session, event: Event) -> Phase:
    """Target phase for `event`, or raise if the move is illegal."""
    if session.gate_open:
        raise TraitsGateOpenError(
            f"Cannot {event.replace('_', ' ')} while a character question is pending"
        )
    target = TRANSITIONS.get((session.phase, event))
    if target is None:
        raise InvalidTransitionError(f"Cannot {event.replace('_', ' ')} from phase {session.phase!r}")
    return target


def next_arc_step_index(session: Session, story_type: StoryType) -> int:
    """One step forward, clamped to the last arc step."""
    return min(session.arc_step_index + 1, story_type.last_arc_step_index)


def is_arc_complete(session: Session, story_type: StoryType) -> bool:
    return session.arc_step_index >= story_type.last_arc_step_index
