"""Errors raised by the L-BFGS history engine."""


class InvalidArgumentError(ValueError):
    """Malformed construction parameters or inputs with the wrong spin count."""


class ProtocolViolationError(RuntimeError):
    """History operations invoked out of the seed -> direction -> reseed order.

    Raised before the history is mutated, e.g. when a direction is requested
    from a history that was never seeded, when the variable and gradient
    counters have drifted apart, or when a released history is reused.
    """
