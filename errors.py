"""Domain errors raised by the store and workflow modules.

``main.py`` turns every ``GarageError`` into a JSON response carrying
``status_code`` and ``{"detail": message}``.
"""


class GarageError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GarageError):
    status_code = 400


class PermissionDeniedError(GarageError):
    status_code = 403


class NotFoundError(GarageError):
    status_code = 404


class ConflictError(GarageError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    pass


class DatabaseUnavailableError(GarageError):
    status_code = 500


class PaymentGatewayError(GarageError):
    status_code = 502
