"""Interactive story progression engine.

Advances one story session through its phases:

  warmup         free chat with the Story Guide (send_message).
  type_selected  a story type fixes the arc template (select_story_type);
                 the first beat moves the session on.
  arc_stepping   each beat narrates the current arc step and offers
                 options. Accepting a choice advances the arc pointer by
                 exactly one step, clamped to the last step.
  ending         candidate endings are offered (run_ending), the child
                 picks one (choose_ending).
  completed      entered only by finalize_session.

TraitsGate: a choice that introduces a character creates it and asks the
child what it is like. While that question is pending
(Session.pending_character_traits), no beat may run. Answering closes the
gate and advances one step. If the question cannot be generated the story
simply continues (fail-open).

Guards: only the live, unchosen options message accepts choices or
regeneration; results that arrive after the session moved on are dropped.
SessionLocks serialises advancing operations per session.

Generation failures raise GenerationError with a child-safe fallback text;
the session is left as it was before the failed call.
"""

from .beats import BeatOutcome, advance_and_run_beat, run_beat  # noqa: F401
from .characters import (  # noqa: F401
    AnswerOutcome,
    answer_traits_question,
    ask_traits_question,
    introduce_character,
)
from .choices import ChoiceOutcome, accept_choice  # noqa: F401
from .context import EngineContext  # noqa: F401
from .endings import EndingOutcome, choose_ending, finalize_session, run_ending  # noqa: F401
from .errors import (  # noqa: F401
    GenerationError,
    InvalidTransitionError,
    PreconditionError,
    SessionBusyError,
    StaleMessageError,
    StoryEngineError,
    TraitsGateOpenError,
)
from .events import BackgroundTriggers, SessionEvents  # noqa: F401
from .locks import SessionLocks  # noqa: F401
from .options import regenerate_options  # noqa: F401
from .state import StoryState, story_state  # noqa: F401
from .warmup import SendOutcome, select_story_type, send_message  # noqa: F401
