from __future__ import annotations


class PortalError(Exception):
	status_code: int = 500
	kind: str = "Unexpected"
	default_message: str = "Internal server error"

	def __init__(self, message: str | None = None) -> None:
		self.message = message or self.default_message
		super().__init__(self.message)


class Unauthenticated(PortalError):
	status_code = 401
	kind = "Unauthenticated"
	default_message = "Could not validate credentials"


class Forbidden(PortalError):
	status_code = 403
	kind = "Forbidden"
	default_message = "Access denied"


class InvalidTransition(PortalError):
	status_code = 400
	kind = "InvalidTransition"
	default_message = "Invalid status transition"


class RecordLocked(PortalError):
	status_code = 400
	kind = "RecordLocked"
	default_message = "Record is locked after submission"


class NotFound(PortalError):
	status_code = 404
	kind = "NotFound"
	default_message = "Not found"


class DuplicateKey(PortalError):
	status_code = 400
	kind = "DuplicateKey"
	default_message = "A record with this criteria and metric number already exists"


class ValidationError(PortalError):
	status_code = 400
	kind = "ValidationError"
	default_message = "Invalid request"


class StorageUnavailable(PortalError):
	status_code = 500
	kind = "StorageUnavailable"
	default_message = "Storage is unavailable. Please try again later."


class Unexpected(PortalError):
	status_code = 500
	kind = "Unexpected"
