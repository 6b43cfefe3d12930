import pytest

from taleweaver.engine.errors import InvalidTransitionError, TraitsGateOpenError
from taleweaver.engine.state import (
    TRANSITIONS,
    ArcStepping,
    Completed,
    TypeSelected,
    Warmup,
    is_arc_complete,
    next_arc_step_index,
    next_phase,
    story_state,
)
from taleweaver.models import ArcTemplate, PendingCharacterTraits, Session, StoryType

STORY_TYPE = StoryType(
    id="t", name="T", default_phase_id="p",
    arc_template=ArcTemplate(steps=["a", "b", "c", "d", "e", "f"]),
)


def _session(**fields) -> Session:
    return Session(id="s1", child_id="kid", **fields)


def _gate() -> PendingCharacterTraits:
    return PendingCharacterTraits(character_id="c1", character_label="Hoot", question_text="?")


class TestStoryState:
    def test_warmup(self):
        assert story_state(_session()) == Warmup()

    def test_type_selected(self):
        state = story_state(_session(phase="type_selected", story_type_id="t"))
        assert state == TypeSelected(story_type_id="t")

    def test_arc_stepping_carries_gate(self):
        state = story_state(_session(phase="arc_stepping", arc_step_index=2,
                                     pending_character_traits=_gate()))
        assert isinstance(state, ArcStepping)
        assert state.arc_step_index == 2
        assert state.gate_open is True

    def test_completed(self):
        state = story_state(_session(phase="completed", selected_ending_id="B"))
        assert state == Completed(selected_ending_id="B")


class TestNextPhase:
    @pytest.mark.parametrize(("phase", "event", "target"), [
        ("warmup", "select_type", "type_selected"),
        ("type_selected", "select_type", "type_selected"),
        ("type_selected", "first_beat", "arc_stepping"),
        ("arc_stepping", "present_endings", "ending"),
        ("ending", "present_endings", "ending"),
        ("ending", "finalize", "completed"),
    ])
    def test_allowed(self, phase, event, target):
        assert next_phase(_session(phase=phase), event) == target

    @pytest.mark.parametrize(("phase", "event"), [
        ("warmup", "first_beat"),
        ("warmup", "present_endings"),
        ("arc_stepping", "select_type"),
        ("completed", "present_endings"),
        ("completed", "select_type"),
        ("arc_stepping", "finalize"),
    ])
    def test_rejected(self, phase, event):
        with pytest.raises(InvalidTransitionError):
            next_phase(_session(phase=phase), event)

    def test_no_way_back_to_warmup(self):
        assert "warmup" not in TRANSITIONS.values()

    def test_gate_blocks_every_transition(self):
        session = _session(phase="arc_stepping", pending_character_traits=_gate())
        with pytest.raises(TraitsGateOpenError):
            next_phase(session, "present_endings")


class TestArcIndex:
    @pytest.mark.parametrize(("index", "expected"), [(0, 1), (2, 3), (4, 5), (5, 5)])
    def test_next_index_clamped(self, index, expected):
        session = _session(phase="arc_stepping", arc_step_index=index)
        assert next_arc_step_index(session, STORY_TYPE) == expected

    def test_arc_complete_only_at_last_step(self):
        assert is_arc_complete(_session(arc_step_index=5), STORY_TYPE) is True
        assert is_arc_complete(_session(arc_step_index=4), STORY_TYPE) is False
