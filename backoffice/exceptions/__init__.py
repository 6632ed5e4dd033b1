"""Custom exceptions for the back-office application."""


class BackofficeError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="Ocurrió un error interno", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['error'] = self.message
        rv['success'] = False
        return rv


class ValidationError(BackofficeError):
    """Raised for bad input shape or range (dates, times, quantities)."""
    def __init__(self, message, field=None, payload=None):
        payload = dict(payload or ())
        if field:
            payload['field'] = field
        super().__init__(message, 400, payload)
        self.field = field


class NotFoundError(BackofficeError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Recurso no encontrado", payload=None):
        super().__init__(message, 404, payload)


class InvalidStateError(BackofficeError):
    """Raised when an operation is not allowed in the current lifecycle state."""
    def __init__(self, message, current_state=None, payload=None):
        payload = dict(payload or ())
        if current_state is not None:
            payload['current_state'] = getattr(current_state, 'value', current_state)
        super().__init__(message, 409, payload)
        self.current_state = current_state


class DuplicateError(BackofficeError):
    """Raised when a uniqueness rule would be violated."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class StorageError(BackofficeError):
    """Raised when the database rejects a unit of work; the message stays generic."""
    def __init__(self, message="No se pudo completar la operación. No se aplicaron cambios."):
        super().__init__(message, 500)
