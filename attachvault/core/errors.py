"""
Binary storage exceptions.

Every error carries the HTTP status it maps to so the API layer can
translate it without knowing about each case.
"""


class BinaryError(Exception):
    """Base exception for binary attachment errors"""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class UnmanagedMappingError(BinaryError):
    """Raised when a model/attribute pair is not declared as an attachment target"""
    status_code = 404

    def __init__(self, model_type: str, attribute: str):
        super().__init__(f"Unknown mapping {model_type}.{attribute}")
        self.model_type = model_type
        self.attribute = attribute


class BinaryNotFoundError(BinaryError):
    """Raised when content or owner does not exist"""
    status_code = 404


class ForbiddenError(BinaryError):
    """Raised on authorization denial, a bad ticket or a challenge mismatch"""
    status_code = 403


class PreconditionFailedError(BinaryError):
    """Raised when an expected storage precondition is absent"""
    status_code = 412


class BadRequestError(BinaryError):
    """Raised on oversized metadata or a malformed descriptor"""
    status_code = 400


class IOFailureError(BinaryError):
    """Raised when the backend cannot read or write content"""
    status_code = 500
