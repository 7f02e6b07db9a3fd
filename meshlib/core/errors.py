class MeshlibError(Exception):
    """Base class for errors raised by meshlib."""


class QueryError(MeshlibError):
    """A remote query kept failing after its retry budget was spent."""

    def __init__(self, message: str, offset: int = 0, attempts: int = 0, cause=None):
        super().__init__(message)
        self.offset = offset
        self.attempts = attempts
        self.cause = cause


class SubmissionError(MeshlibError):
    """The remote ledger refused a transaction or answered without a tx id."""


class StorageError(MeshlibError):
    """Durable storage could not be read or written."""
