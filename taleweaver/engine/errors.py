"""Engine exception hierarchy.

Every failure is scoped to one session. The API layer maps these to HTTP
status codes; nothing here is fatal to the process.
"""

FALLBACK_MESSAGE = "Oops, something went wrong. Let's try again."


class StoryEngineError(Exception):
    """Base class for all engine errors."""


class GenerationError(StoryEngineError):
    """The generation service returned not-ok, raised, or timed out.

    No store writes happened for the failed call. `user_message` is safe to
    show to the child; `diagnostic` is the raw error string.
    """

    def __init__(self, diagnostic: str, user_message: str = FALLBACK_MESSAGE) -> None:
        super().__init__(diagnostic)
        self.diagnostic = diagnostic
        self.user_message = user_message


class StaleMessageError(StoryEngineError):
    """The action targets a message that is no longer live. Nothing was written."""


class TraitsGateOpenError(StoryEngineError):
    """Advancement attempted while a character traits question is pending."""


class PreconditionError(StoryEngineError):
    """Session or story type is missing or not ready for the operation."""


class InvalidTransitionError(StoryEngineError):
    """The requested phase change is not allowed from the current state."""


class SessionBusyError(StoryEngineError):
    """Another advancing operation is already running for this session."""
