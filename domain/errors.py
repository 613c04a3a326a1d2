"""Failures of the recipe book, each mapped to an HTTP status and a kind."""


class MediaError(Exception):
    status = 500
    kind = "error"
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class MalformedBody(MediaError):
    status = 400
    kind = "malformed_body"
    default_message = "Request body could not be read."


class AuthenticationRequired(MediaError):
    status = 401
    kind = "authentication_required"
    default_message = "Sign in first."


class InvalidCredentials(MediaError):
    status = 401
    kind = "invalid_credentials"
    default_message = "Username or password is wrong."


class OwnershipMismatch(MediaError):
    status = 403
    kind = "ownership_mismatch"
    default_message = "You do not own this resource."


class NotFound(MediaError):
    status = 404
    kind = "not_found"
    default_message = "No such entity."


class StateMissing(MediaError):
    status = 404
    kind = "state_missing"
    default_message = "No media is attached."


class StateConflict(MediaError):
    status = 409
    kind = "state_conflict"
    default_message = "Media is already attached."


class Duplicate(MediaError):
    status = 409
    kind = "duplicate"
    default_message = "An entity with that name already exists."


class PayloadTooLarge(MediaError):
    status = 413
    kind = "payload_too_large"
    default_message = "Upload is too large."


class UnsupportedType(MediaError):
    status = 415
    kind = "unsupported_type"
    default_message = "Unsupported media type."


class InvalidPayload(MediaError):
    status = 422
    kind = "invalid_payload"
    default_message = "Payload failed validation."


class IOFault(MediaError):
    status = 500
    kind = "io_fault"
    default_message = "Storage failure."
