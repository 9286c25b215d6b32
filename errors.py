"""Error taxonomy shared by the orchestrator components."""


class BotError(Exception):
    """Base class for orchestrator errors."""


class TransportFailure(BotError):
    """A transport could not hand the move off (send-time fault)."""


class ValidationFailure(BotError):
    """A candidate move was rejected by the rules oracle."""


class TerminalPosition(ValidationFailure):
    """The oracle reports no legal moves; automated play must stop."""


class EngineStall(BotError):
    """The engine produced no output within the watchdog timeout."""


class EngineInitFailure(BotError):
    """The engine process could not be started or never became ready."""


class AcknowledgmentTimeout(BotError):
    """The tracked position did not change after a move was sent."""


class InvalidTransition(BotError):
    """A state machine was asked to make a transition it does not allow."""
