"""Error kinds raised by the game core and its store/identity adapters."""


class ChosungError(Exception):
    """Base class for all application errors."""


class ConfigMissing(ChosungError):
    """Required configuration is absent; nothing can proceed."""


class AuthFailure(ChosungError):
    """Identity bootstrap rejected the supplied credentials."""


class ProfileWriteFailure(ChosungError):
    """A write to the profile store failed."""


class SubscriptionFailure(ChosungError):
    """The live leaderboard feed reported an error."""


class InsufficientQuestions(ChosungError):
    """The requested round size exceeds the question bank."""

    def __init__(self, requested: int, available: int):
        super().__init__(f"round needs {requested} questions, bank has {available}")
        self.requested = requested
        self.available = available
