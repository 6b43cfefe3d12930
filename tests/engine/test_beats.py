import asyncio

import pytest

from taleweaver.engine import (
    GenerationError,
    InvalidTransitionError,
    PreconditionError,
    StaleMessageError,
    TraitsGateOpenError,
    advance_and_run_beat,
    run_beat,
)
from taleweaver.models import PendingCharacterTraits


class TestRunBeat:
    async def test_appends_continuation_then_options(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=1)
        llm.beat("The bunny met a turtle.")

        outcome = await run_beat(ctx, session.id)

        messages = storage.get_messages(session.id)
        continuation, options = messages[-2], messages[-1]
        assert continuation.kind == "beat_continuation"
        assert continuation.text == "The bunny met a turtle."
        assert options.kind == "beat_options"
        assert [c.id for c in options.options] == ["A", "B", "C"]
        assert continuation.seq < options.seq
        assert outcome.continuation_message_id == continuation.id
        assert outcome.options_message_id == options.id

    async def test_does_not_move_arc_pointer(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=3)
        llm.beat()

        outcome = await run_beat(ctx, session.id)

        assert storage.get_session(session.id).arc_step_index == 3
        assert outcome.arc_step == "problem_appears"
        assert outcome.arc_complete is False

    async def test_parses_character_fields_from_options(self, ctx, llm, make_session):
        session, _ = make_session(arc_step_index=0)
        llm.beat()

        outcome = await run_beat(ctx, session.id)

        squirrel = outcome.options[2]
        assert squirrel.introduces_character is True
        assert squirrel.new_character_name == "Nutsy"
        assert squirrel.new_character_label == "a friendly squirrel who loves acorns"
        assert squirrel.new_character_kind == "Pet"

    async def test_first_beat_moves_to_arc_stepping(self, ctx, storage, llm, make_session):
        session, _ = make_session(phase="type_selected")
        llm.beat()

        await run_beat(ctx, session.id)

        after = storage.get_session(session.id)
        assert after.phase == "arc_stepping"
        assert after.arc_step_index == 0

    async def test_failure_writes_nothing(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=2)
        before_messages = storage.get_messages(session.id)
        before_session = storage.get_session(session.id)
        llm.fail("story_beat")

        with pytest.raises(GenerationError) as exc_info:
            await run_beat(ctx, session.id)

        assert exc_info.value.user_message == "The story got a little stuck. Let's try that again."
        assert storage.get_messages(session.id) == before_messages
        assert storage.get_session(session.id) == before_session

    async def test_malformed_output_is_a_failure(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=2)
        llm.script("story_beat", '{"storyContinuation": "Hi", "options": [{"id": "A", "text": "Only one"}]}')

        with pytest.raises(GenerationError):
            await run_beat(ctx, session.id)

        assert len(storage.get_messages(session.id)) == 2

    async def test_gate_open_rejects_before_calling_llm(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=2)
        storage.update_session(
            session.id,
            pending_character_traits=PendingCharacterTraits(
                character_id="c1", character_label="Hoot", question_text="What is Hoot like?",
            ),
        )

        with pytest.raises(TraitsGateOpenError):
            await run_beat(ctx, session.id)

        assert llm.calls == []
        assert len(storage.get_messages(session.id)) == 2

    async def test_warmup_session_rejected(self, ctx, make_session):
        session, _ = make_session(phase="warmup")

        with pytest.raises(InvalidTransitionError):
            await run_beat(ctx, session.id)

    async def test_missing_session(self, ctx):
        with pytest.raises(PreconditionError):
            await run_beat(ctx, "nope")

    async def test_late_beat_discarded_when_session_moved_on(self, ctx, storage, llm, make_session):
        session, options_msg = make_session(arc_step_index=2)
        release = asyncio.Event()

        async def slow_beat():
            await release.wait()
            return '{"storyContinuation": "Too late", "options": [' \
                '{"id": "A", "text": "a"}, {"id": "B", "text": "b"}, {"id": "C", "text": "c"}]}'

        llm.hold("story_beat", slow_beat)
        pending = asyncio.create_task(run_beat(ctx, session.id))
        while not llm.calls:
            await asyncio.sleep(0)
        # another writer advanced the pointer meanwhile
        storage.update_session(session.id, arc_step_index=3)
        release.set()

        with pytest.raises(StaleMessageError):
            await pending

        texts = [m.text for m in storage.get_messages(session.id)]
        assert "Too late" not in texts

    async def test_logs_session_events(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=1)
        llm.beat()

        await run_beat(ctx, session.id)

        events = [e.event for e in storage.get_events(session.id)]
        assert events == ["beat.requested", "beat.completed"]


class TestAdvanceAndRunBeat:
    async def test_advances_one_step(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=2)
        llm.beat()

        outcome = await advance_and_run_beat(ctx, session.id)

        assert outcome.arc_step_index == 3
        assert storage.get_session(session.id).arc_step_index == 3
        assert "Current Arc Step: problem_appears (4 of 6)" in llm.calls[0][1]

    async def test_clamps_at_last_step(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=5)
        llm.beat()

        outcome = await advance_and_run_beat(ctx, session.id)

        assert outcome.arc_step_index == 5
        assert outcome.arc_complete is True
        advanced = [e for e in storage.get_events(session.id) if e.event == "arc.advanced"]
        assert advanced[0].attributes == {"arc_step_index": 5, "clamped": True}

    async def test_requires_arc_stepping(self, ctx, llm, make_session):
        session, _ = make_session(phase="type_selected")

        with pytest.raises(InvalidTransitionError):
            await advance_and_run_beat(ctx, session.id)
        assert llm.calls == []
