from __future__ import annotations


class MalformedDescriptor(ValueError):
    """A formatted "SECTION - PRODUCT - WEIGHT" string that cannot be split."""

    def __init__(self, descriptor: str):
        self.descriptor = descriptor
        super().__init__(f"malformed product descriptor: {descriptor!r}")


class StoreIOError(RuntimeError):
    """Transient store failure that survived the bounded retry."""

    def __init__(self, operation: str, attempts: int, cause: Exception | None = None):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        msg = f"store operation {operation!r} failed after {attempts} attempt(s)"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
