"""
Proctoring error taxonomy
Shared by the ledger service, the HTTP layer and the client agent
"""


class ProctoringError(Exception):
    """Base class for errors surfaced to callers as JSON"""
    status_code = 500

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class ValidationError(ProctoringError):
    """Invalid request"""
    status_code = 400


class Forbidden(ProctoringError):
    """Not authorized"""
    status_code = 403


class NotFound(ProctoringError):
    """Not found"""
    status_code = 404


class LedgerBusy(ProctoringError):
    """Proctoring session is busy"""
    status_code = 503


class DeviceUnavailable(ProctoringError):
    """Camera or detection model unavailable"""


class TransportFailure(ProctoringError):
    """Ledger or broadcast transport failed"""
    status_code = 502
