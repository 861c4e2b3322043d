from __future__ import annotations

from typing import Literal


class IngestError(Exception):
    """Base class for every failure the video ingestion pipeline can surface."""

    fatal: bool = True


# Validation (never retried).


class ValidationError(IngestError):
    pass


class UploadRejected(ValidationError):
    def __init__(self, mime_type: str | None):
        self.mime_type = mime_type
        super().__init__(f"Not a video file (mime_type={mime_type or 'unknown'})")


class FileTooLarge(ValidationError):
    def __init__(self, size_bytes: int, max_size_bytes: int):
        self.size_bytes = size_bytes
        self.max_size_bytes = max_size_bytes
        super().__init__(f"Video file is {size_bytes} bytes; the limit is {max_size_bytes} bytes")


# Duration probing (non-fatal).


class DurationDetectionFailed(IngestError):
    fatal = False


# Upload transfer.


class TransferFailed(IngestError):
    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            message = f"{message} ({status_code}): {body or ''}".rstrip(": ")
        super().__init__(message)


# Asset processing.


class ProcessingFailed(IngestError):
    def __init__(self, asset_id: str, message: str = "Video processing failed; please re-upload the video"):
        self.asset_id = asset_id
        super().__init__(message)


class PollingTimeout(IngestError):
    fatal = False

    def __init__(self, asset_id: str, attempts: int, *, resolved_asset_id: str | None = None):
        self.asset_id = asset_id
        self.attempts = attempts
        # Set when polling started from an upload handle and linked it to an asset.
        self.resolved_asset_id = resolved_asset_id
        super().__init__(f"Asset {asset_id} still processing after {attempts} status checks")


class AssetLookupFailed(IngestError):
    """Polling stopped because the service refused the lookup (bad id, bad credentials...)."""

    fatal = False

    def __init__(self, asset_id: str, reason: str, message: str):
        self.asset_id = asset_id
        self.reason = reason
        super().__init__(message)


# Transcoding service transport.


MuxErrorReason = Literal["not_found", "unauthorized", "forbidden", "service", "network"]


class MuxApiError(Exception):
    def __init__(self, reason: MuxErrorReason, message: str, *, status_code: int | None = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(message)


class MuxNotConfigured(Exception):
    pass


# Relational store.


StoreErrorKind = Literal["schema", "validation", "transport"]


class StoreError(Exception):
    """
    Tagged store failure. `kind` lets callers branch without parsing error text:
    - schema: the table does not know a column we sent
    - validation: the row was rejected (constraint, type, permissions)
    - transport: the store could not be reached or failed internally
    """

    def __init__(
        self,
        kind: StoreErrorKind,
        message: str,
        *,
        code: str | None = None,
        details: str | None = None,
        hint: str | None = None,
    ):
        self.kind = kind
        self.code = code
        self.details = details
        self.hint = hint
        super().__init__(message)


class PersistenceFailed(IngestError):
    def __init__(self, table: str, cause: StoreError):
        self.table = table
        self.cause = cause
        super().__init__(f"Could not save video record to {table}: {cause}")


# Tenant directory.


class TenantError(Exception):
    def __init__(self, tenant_id: str, message: str):
        self.tenant_id = tenant_id
        super().__init__(message)


class TenantNotFound(TenantError):
    def __init__(self, tenant_id: str):
        super().__init__(tenant_id, f"No store configuration found for tenant: {tenant_id}")


class TenantConfigIncomplete(TenantError):
    def __init__(self, tenant_id: str):
        super().__init__(tenant_id, f"Incomplete store configuration for tenant: {tenant_id}")
