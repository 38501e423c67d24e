"""Domain errors raised by the job lifecycle engine.

Every error carries an HTTP status, a short machine-readable ``kind`` and a
message that is safe to show to the user. The kinds let the UI tell
"not authorized" apart from "try again" and from "fix your input".
"""


class LifecycleError(Exception):
    status_code = 400
    kind = "error"
    default_message = "The request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthorizationError(LifecycleError):
    status_code = 403
    kind = "unauthorized"
    default_message = "You are not authorized to perform this action."


class ValidationError(LifecycleError):
    status_code = 422
    kind = "invalid"
    default_message = "Invalid input."


class DuplicateApplicationError(ValidationError):
    default_message = "You have already applied for this job."


class ConflictError(LifecycleError):
    status_code = 409
    kind = "conflict"
    default_message = "The request conflicts with the current state."


class NotFoundError(LifecycleError):
    status_code = 404
    kind = "not_found"
    default_message = "Not found."


class StoreError(LifecycleError):
    status_code = 503
    kind = "transient"
    default_message = "Temporary failure, please retry."


class PaymentError(LifecycleError):
    status_code = 502
    kind = "transient"
    default_message = "Payment could not be processed, please retry."
