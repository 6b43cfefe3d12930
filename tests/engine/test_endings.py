import pytest

from taleweaver.engine import (
    GenerationError,
    InvalidTransitionError,
    PreconditionError,
    StaleMessageError,
    TraitsGateOpenError,
    choose_ending,
    finalize_session,
    run_ending,
)
from taleweaver.models import PendingCharacterTraits


async def _present(ctx, llm, make_session, arc_step_index=5):
    session, _ = make_session(arc_step_index=arc_step_index)
    llm.endings(["They had a picnic.", "They went home.", "They danced."])
    outcome = await run_ending(ctx, session.id)
    return session, outcome


class TestRunEnding:
    async def test_presents_endings_and_enters_ending_phase(self, ctx, storage, llm, make_session):
        session, outcome = await _present(ctx, llm, make_session)

        assert outcome.phase == "ending"
        assert [e.text for e in outcome.endings] == ["They had a picnic.", "They went home.", "They danced."]
        msg = storage.get_message(session.id, outcome.options_message_id)
        assert msg.kind == "ending_options"
        assert [c.id for c in msg.options] == ["A", "B", "C"]
        assert storage.get_session(session.id).phase == "ending"

    async def test_preview_writes_nothing(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=2)
        before = storage.get_messages(session.id)
        llm.endings()

        outcome = await run_ending(ctx, session.id, preview=True)

        assert len(outcome.endings) == 3
        assert outcome.options_message_id is None
        assert outcome.phase == "arc_stepping"
        assert storage.get_messages(session.id) == before
        assert storage.get_session(session.id).phase == "arc_stepping"

    async def test_reroll_in_ending_phase(self, ctx, storage, llm, make_session):
        session, first = await _present(ctx, llm, make_session)
        llm.endings(["New one.", "New two.", "New three."])

        second = await run_ending(ctx, session.id)

        assert second.options_message_id != first.options_message_id
        assert storage.latest_message(session.id, ["ending_options"]).id == second.options_message_id

    async def test_failure_writes_nothing(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=5)
        before = storage.get_messages(session.id)
        llm.fail("story_ending")

        with pytest.raises(GenerationError):
            await run_ending(ctx, session.id)

        assert storage.get_messages(session.id) == before
        assert storage.get_session(session.id).phase == "arc_stepping"

    async def test_mid_arc_rejected_before_generation(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=1)
        before = storage.get_messages(session.id)
        llm.endings()

        with pytest.raises(InvalidTransitionError):
            await run_ending(ctx, session.id)

        assert llm.calls == []
        after = storage.get_session(session.id)
        assert after.phase == "arc_stepping"
        assert after.arc_step_index == 1
        assert storage.get_messages(session.id) == before

    async def test_gate_open_rejected(self, ctx, storage, llm, make_session):
        session, _ = make_session(arc_step_index=5)
        storage.update_session(
            session.id,
            pending_character_traits=PendingCharacterTraits(
                character_id="c1", character_label="Hoot", question_text="?",
            ),
        )

        with pytest.raises(TraitsGateOpenError):
            await run_ending(ctx, session.id)
        assert llm.calls == []

    async def test_warmup_rejected(self, ctx, make_session):
        session, _ = make_session(phase="warmup")

        with pytest.raises(PreconditionError):
            await run_ending(ctx, session.id)


class TestChooseAndFinalize:
    async def test_choose_ending_records_pick(self, ctx, storage, llm, make_session):
        session, outcome = await _present(ctx, llm, make_session)

        updated = choose_ending(ctx, session.id, outcome.options_message_id, "B")

        assert updated.selected_ending_id == "B"
        assert updated.selected_ending_text == "They went home."
        last = storage.get_messages(session.id)[-1]
        assert last.kind == "child_ending_choice"
        assert last.options_message_id == outcome.options_message_id

    async def test_choose_twice_rejected(self, ctx, storage, llm, make_session):
        session, outcome = await _present(ctx, llm, make_session)
        choose_ending(ctx, session.id, outcome.options_message_id, "A")

        with pytest.raises(StaleMessageError):
            choose_ending(ctx, session.id, outcome.options_message_id, "C")
        assert storage.get_session(session.id).selected_ending_id == "A"

    async def test_choose_on_rerolled_message_rejected(self, ctx, llm, make_session):
        session, first = await _present(ctx, llm, make_session)
        llm.endings()
        await run_ending(ctx, session.id)

        with pytest.raises(StaleMessageError):
            choose_ending(ctx, session.id, first.options_message_id, "A")

    async def test_reroll_after_pick_rejected(self, ctx, llm, make_session):
        session, outcome = await _present(ctx, llm, make_session)
        choose_ending(ctx, session.id, outcome.options_message_id, "A")

        with pytest.raises(InvalidTransitionError):
            await run_ending(ctx, session.id)

    async def test_choose_outside_ending_phase(self, ctx, make_session):
        session, options_msg = make_session(arc_step_index=3)

        with pytest.raises(InvalidTransitionError):
            choose_ending(ctx, session.id, options_msg.id, "A")

    async def test_finalize_completes_session(self, ctx, storage, llm, make_session):
        session, outcome = await _present(ctx, llm, make_session)
        choose_ending(ctx, session.id, outcome.options_message_id, "C")

        finished = finalize_session(ctx, session.id)

        assert finished.phase == "completed"
        assert finished.selected_ending_text == "They danced."

    async def test_finalize_requires_pick(self, ctx, llm, make_session):
        session, _ = await _present(ctx, llm, make_session)

        with pytest.raises(PreconditionError):
            finalize_session(ctx, session.id)

    async def test_engine_never_completes_on_its_own(self, ctx, storage, llm, make_session):
        session, outcome = await _present(ctx, llm, make_session)
        choose_ending(ctx, session.id, outcome.options_message_id, "A")

        assert storage.get_session(session.id).phase == "ending"
