"""
Error taxonomy for the sync engine.

Validation and hierarchy errors never escape the write path: they are turned
into failed ``WriteResult`` objects. ``DeliveryFailure`` is turned into a
failed ``DeliveryResult`` by the LinkHub client. ``NotConfigured`` is the one
error that aborts a whole drain run.
"""


class OKRHubError(Exception):
    """Base class for all sync engine errors."""
    code = "okrhub_error"

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class InvalidSourceApp(OKRHubError):
    code = "invalid_source_app"

    def __init__(self, source_app):
        self.source_app = source_app
        super().__init__(
            f'Invalid sourceApp format: "{source_app}". '
            f"Must be 2-32 lowercase alphanumeric characters or hyphens."
        )


class InvalidExternalId(OKRHubError):
    code = "invalid_external_id"

    def __init__(self, field, value, reason=None):
        self.field = field
        self.value = value
        super().__init__(
            reason or (
                f'Invalid {field} format: "{value}". '
                f"Expected format: {{sourceApp}}:{{entityType}}:{{uuid}}"
            )
        )


class ParentNotFound(OKRHubError):
    code = "parent_not_found"

    def __init__(self, parent_id, parent_kind, create_call):
        self.parent_id = parent_id
        self.parent_kind = parent_kind
        self.create_call = create_call
        super().__init__(
            f"Parent {parent_kind} not found in local tables: {parent_id}. "
            f"Create it first via {create_call}()."
        )


class NotFound(OKRHubError):
    code = "not_found"

    def __init__(self, entity_kind, external_id):
        self.entity_kind = entity_kind
        self.external_id = external_id
        super().__init__(f"{entity_kind} not found: {external_id}")


class NotConfigured(OKRHubError):
    code = "not_configured"

    def __init__(self, message=None):
        super().__init__(
            message or (
                "OKRHub not configured. Either pass endpoint_url/api_key_prefix/"
                "signing_secret explicitly, or call configure() first to store the config."
            )
        )


class DeliveryFailure(OKRHubError):
    code = "delivery_failure"

    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class PartialBatchFailure(OKRHubError):
    """Batch envelope reported failure although some items were accepted."""
    code = "partial_batch_failure"

    def __init__(self, succeeded, failed, errors=None):
        self.succeeded = succeeded
        self.failed = failed
        self.errors = list(errors or [])
        super().__init__(
            f"Batch partially failed: {succeeded} accepted, {failed} rejected"
        )


class InvalidField(OKRHubError):
    """A required business field is missing or holds a value outside its choices."""
    code = "invalid_field"

    def __init__(self, field, message):
        self.field = field
        super().__init__(message)
