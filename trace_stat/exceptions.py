"""Exceptions raised by Trace Stat."""


class TraceStatError(Exception):
    """Base exception for Trace Stat.

    The CLI reports these as a one-line diagnostic instead of a traceback.
    """

    def __init__(self, message: str):
        """Initialize the error.

        Args:
            message: Human readable description of the failure.
        """
        super().__init__(message)
        self.message = message


class InputNotFoundError(TraceStatError):
    """An input file required by a command does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Input file not found: {path}")
        self.path = path


class InputFormatError(TraceStatError):
    """A trace table is missing columns or holds values of the wrong type."""


class SnapshotFormatError(TraceStatError):
    """A persisted snapshot or registry file could not be decoded."""


class InvalidParameterError(TraceStatError):
    """A command parameter has a value that cannot be used."""


class StaleStatisticError(TraceStatError):
    """Derived fields were read while samples are still waiting for derive()."""
