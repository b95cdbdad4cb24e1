class CreatorbookError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class ValidationError(CreatorbookError):
    status_code = 400


class Forbidden(CreatorbookError):
    status_code = 403


class NotFound(CreatorbookError):
    status_code = 404


class InvalidState(CreatorbookError):
    status_code = 409


class Conflict(CreatorbookError):
    status_code = 409


class InsufficientFunds(CreatorbookError):
    status_code = 402


class StorageFailure(CreatorbookError):
    """Transient storage problem; the whole unit of work was rolled back."""

    status_code = 503
