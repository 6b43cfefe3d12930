import json
from collections import defaultdict
from collections.abc import Awaitable, Callable

import pytest

from taleweaver.engine import EngineContext, SessionEvents
from taleweaver.generation import GenerationClient
from taleweaver.llm import LLMError
from taleweaver.models import ArcTemplate, Choice, StoryType
from taleweaver.storage import Storage

ARC_STEPS = [
    "introduce_character",
    "explore_world",
    "meet_friend",
    "problem_appears",
    "solve_problem",
    "celebrate",
]

BEAT_OPTIONS = [
    {"id": "A", "text": "Follow the sparkly river"},
    {"id": "B", "text": "Climb the tall hill"},
    {
        "id": "C",
        "text": "Say hello to the squirrel",
        "introducesCharacter": True,
        "newCharacterName": "Nutsy",
        "newCharacterLabel": "a friendly squirrel who loves acorns",
        "newCharacterType": "Pet",
    },
]

SEED_CHOICES = [
    Choice(id="A", text="Peek inside the hollow log"),
    Choice(id="B", text="Run to the meadow"),
    Choice(
        id="C",
        text="Wave at the owl",
        introduces_character=True,
        new_character_name="Hoot",
        new_character_label="a sleepy owl with big glasses",
        new_character_kind="Friend",
    ),
]


class ScriptedLLM:
    """Returns canned responses per stage, in order, and records every call.

    A scripted response may be a string, an exception instance (raised), or
    an async callable (awaited; lets tests hold a call open).
    """

    def __init__(self) -> None:
        self.responses: dict[str, list] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []

    def script(self, stage: str, *responses) -> "ScriptedLLM":
        self.responses[stage].extend(responses)
        return self

    def beat(self, continuation: str = "The bunny hopped into the woods.", options=None) -> "ScriptedLLM":
        return self.script("story_beat", json.dumps({
            "storyContinuation": continuation,
            "options": options if options is not None else BEAT_OPTIONS,
        }))

    def traits(self, question: str = "What is Hoot like?", traits=None) -> "ScriptedLLM":
        return self.script("character_traits", json.dumps({
            "question": question,
            "suggestedTraits": traits if traits is not None else ["wise", "sleepy"],
        }))

    def endings(self, texts=None) -> "ScriptedLLM":
        texts = texts or ["They all had a picnic.", "Everyone fell asleep.", "The moon smiled."]
        return self.script("story_ending", json.dumps({
            "endings": [{"id": letter, "text": t} for letter, t in zip("ABC", texts)],
        }))

    def fail(self, stage: str, times: int = 1) -> "ScriptedLLM":
        return self.script(stage, *[LLMError("LLM backend returned HTTP 503")] * times)

    def hold(self, stage: str, gate: Callable[[], Awaitable[str]]) -> "ScriptedLLM":
        return self.script(stage, gate)

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    async def __call__(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        if not self.responses[stage]:
            raise LLMError(f"No scripted response for {stage}")
        response = self.responses[stage].pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response()
        return response


@pytest.fixture
def storage(tmp_path) -> Storage:
    return Storage(tmp_path / "data")


@pytest.fixture
def story_type(storage) -> StoryType:
    return storage.save_story_type(StoryType(
        id="animal-adventure",
        name="Animal Adventure",
        default_phase_id="story_beat_phase_v1",
        ending_phase_id="ending_phase_v1",
        arc_template=ArcTemplate(steps=ARC_STEPS),
    ))


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def client(storage, llm) -> GenerationClient:
    return GenerationClient(storage, llm, timeout=5.0)


@pytest.fixture
def ctx(storage, client) -> EngineContext:
    return EngineContext(
        storage=storage,
        client=client,
        events=SessionEvents(storage),
        options_retry_attempts=3,
        options_retry_base_delay=0.0,
    )


@pytest.fixture
def make_session(storage, story_type):
    """Build a session in a given phase/arc step.

    In arc_stepping a continuation + live beat_options message (SEED_CHOICES)
    are seeded. Returns (session, options_message_or_None).
    """

    def _make(phase: str = "arc_stepping", arc_step_index: int = 0, with_options: bool = True):
        session = storage.create_session("child-1")
        fields: dict = {"phase": phase, "arc_step_index": arc_step_index}
        if phase != "warmup":
            fields.update(
                story_type_id=story_type.id,
                story_type_name=story_type.name,
                story_phase_id=story_type.default_phase_id,
                ending_phase_id=story_type.ending_phase_id,
            )
        session = storage.update_session(session.id, **fields)
        options_msg = None
        if with_options and phase == "arc_stepping":
            storage.append_message(
                session.id, sender="assistant", kind="beat_continuation",
                text="Once upon a time a little bunny woke up.",
            )
            options_msg = storage.append_message(
                session.id, sender="assistant", kind="beat_options",
                text="What happens next?", options=SEED_CHOICES,
            )
        return session, options_msg

    return _make
