"""Error hierarchy for ensembles."""


class EnsemblesError(Exception):
    """Base exception for ensemble failures."""

    def __init__(self, message, context=None):
        super().__init__(message)
        self.context = dict(context) if context else {}


class ShapeError(EnsemblesError, ValueError):
    """Vector length mismatch or a value that can't be vectorized."""


class AlreadyExistsError(EnsemblesError, FileExistsError):
    """Target path collides with an existing ensemble."""


class UnsupportedVersionError(EnsemblesError):
    """Unknown version in a saved ensemble file."""


class UnsupportedBackendError(EnsemblesError):
    """Parallel backend can't give each worker its own noise stream."""


class WorkerFailure(EnsemblesError):
    """A parallel worker raised; the cause is chained as __cause__."""


class UnknownKeyError(EnsemblesError, KeyError):
    """Lookup by name with no registered handler."""

    def __str__(self):
        return Exception.__str__(self)


class MissingMemberError(EnsemblesError):
    """Member files missing from a split-layout ensemble directory."""


__all__ = [
    "EnsemblesError",
    "ShapeError",
    "AlreadyExistsError",
    "UnsupportedVersionError",
    "UnsupportedBackendError",
    "WorkerFailure",
    "UnknownKeyError",
    "MissingMemberError",
]
