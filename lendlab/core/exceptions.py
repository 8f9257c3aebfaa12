
class LendLabError(Exception):
    kind = "Internal"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.kind

    def to_dict(self):
        return {"kind": self.kind, "message": self.message}

class UnauthorizedError(LendLabError):
    kind = "Unauthorized"
    status_code = 401

class ForbiddenError(LendLabError):
    kind = "Forbidden"
    status_code = 403

class NotFoundError(LendLabError):
    kind = "NotFound"
    status_code = 404

class ValidationError(LendLabError):
    kind = "ValidationError"
    status_code = 400

class InvalidTransitionError(LendLabError):
    kind = "InvalidTransition"
    status_code = 400

class InternalError(LendLabError):
    kind = "Internal"
    status_code = 500

class DatabaseError(InternalError): pass

class StorageError(InternalError): pass
