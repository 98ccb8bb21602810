"""Error taxonomy shared by the REST routes and the WebSocket handler.

Every error carries an HTTP status and a stable ``code``; the app renders
them as ``{"error": code, "message": text}``.
"""


class ChatError(Exception):
    status_code = 500
    code = "server_error"
    default_message = "Server error"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class Unauthorized(ChatError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class InvalidToken(ChatError):
    status_code = 401
    code = "invalid_token"
    default_message = "Invalid token"


class Forbidden(ChatError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFound(ChatError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class Conflict(ChatError):
    # duplicate identity at registration is reported as a 400
    status_code = 400
    code = "conflict"
    default_message = "Already registered"


class ValidationError(ChatError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class StoreUnavailable(ChatError):
    status_code = 503
    code = "store_unavailable"
    default_message = "Document store unavailable"
