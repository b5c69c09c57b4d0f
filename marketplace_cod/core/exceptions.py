"""Exceptions that abort a unit of work.

Guard violations are not exceptions; they come back as result objects.
These are raised only when the transaction itself has to be rolled back.
"""


class SettlementError(Exception):
    """Base class for errors raised by the settlement core."""


class ConcurrentUpdateError(SettlementError):
    """Fewer rows were in the expected status than a status change listed."""

    def __init__(self, entity: str, expected: int, actual: int):
        self.entity = entity
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrent modification of {entity}: expected {expected} rows, found {actual}"
        )


class BankTransferError(SettlementError):
    """The payout transfer could not be sent."""
