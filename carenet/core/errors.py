"""Domain error taxonomy.

Every error carries a stable ``code`` (used in API responses and logs) and the
HTTP status the API layer answers with.
"""


class CareNetError(Exception):
    code = "error"
    status_code = 400
    message = "Request could not be completed"

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)


class AlreadyConnected(CareNetError):
    code = "already_connected"
    status_code = 409
    message = "You are already connected with this person"


class RequestPending(CareNetError):
    code = "request_pending"
    status_code = 409
    message = "A connection request is already pending"


class NotPending(CareNetError):
    code = "not_pending"
    status_code = 409
    message = "This request is no longer pending"


class NotAuthorized(CareNetError):
    code = "not_authorized"
    status_code = 403
    message = "You are not allowed to perform this action"


class InvalidRequest(CareNetError):
    code = "invalid_request"
    status_code = 422
    message = "Invalid request"


class RelationshipNotFound(CareNetError):
    code = "relationship_not_found"
    status_code = 404
    message = "Relationship not found"


class ConsentNotFound(CareNetError):
    code = "consent_not_found"
    status_code = 404
    message = "Consent record not found"


class SafeZoneNotFound(CareNetError):
    code = "safe_zone_not_found"
    status_code = 404
    message = "Safe zone not found"


class AlertNotFound(CareNetError):
    code = "alert_not_found"
    status_code = 404
    message = "Alert not found"


class StoreConflict(CareNetError):
    code = "store_conflict"
    status_code = 409
    message = "The record was changed concurrently, please retry"


class NotificationDeliveryFailed(CareNetError):
    code = "notification_delivery_failed"
    status_code = 502
    message = "Notification could not be delivered"
