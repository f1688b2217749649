"""
Domain errors raised by the services and rendered into the response
envelope by the handlers in gateway.core.envelope.
"""


class GatewayError(Exception):
    status_code = 500
    message = "Server error"

    def __init__(self, message: str = None):
        if message:
            self.message = message
        super().__init__(self.message)


class ValidationFailed(GatewayError):
    status_code = 400
    message = "Invalid request"


class AuthError(GatewayError):
    status_code = 401
    message = "Unauthorized"


class MissingKey(AuthError):
    message = "API key is required"


class InvalidKey(AuthError):
    message = "Invalid API key"


class Expired(AuthError):
    message = "API key has expired"


class AdminUnauthorized(AuthError):
    message = "Admin token is missing or invalid"


class AccountNotFound(GatewayError):
    status_code = 404
    message = "User not found"


class UnknownJob(GatewayError):
    status_code = 404
    message = "Job not found"


class DuplicateAccount(GatewayError):
    status_code = 409
    message = "User with this email or Telegram ID already exists"


class LimitExceeded(GatewayError):
    status_code = 429
    message = "Daily request limit exceeded"


class LockUnavailable(GatewayError):
    status_code = 500
    message = "Could not acquire account lock"
