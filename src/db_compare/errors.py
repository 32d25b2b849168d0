"""Exception hierarchy for schema comparison.

Fatal errors (``DatabaseConnectionError``, ``ExtractionError``) abort a
comparison run.  ``DefinitionFetchError`` is recovered by the definition
cache: the object is simply excluded from content comparison.
"""


class CompareError(Exception):
    """Base class for all db-compare errors."""

    pass


class DatabaseConnectionError(CompareError, ConnectionError):
    """Raised when a session cannot be opened for a connection/database."""

    pass


class ExtractionError(CompareError):
    """Raised when an introspection query fails on an open session."""

    def __init__(self, database: str, step: str, cause: BaseException | None = None):
        self.database = database
        self.step = step
        message = f"Failed to read {step} from database '{database}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class DefinitionFetchError(CompareError):
    """Raised when one object's definition text cannot be retrieved."""

    def __init__(self, kind: str, name: str, cause: BaseException | None = None):
        self.kind = kind
        self.name = name
        message = f"Could not fetch definition for {kind} {name}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ComparisonCancelledError(CompareError):
    """Raised when a comparison run is cancelled or superseded."""

    pass
