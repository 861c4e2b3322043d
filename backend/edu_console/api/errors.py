from __future__ import annotations

from fastapi import HTTPException, status

from edu_console.core.errors import (
    FileTooLarge,
    MuxApiError,
    MuxNotConfigured,
    PersistenceFailed,
    ProcessingFailed,
    StoreError,
    TenantConfigIncomplete,
    TenantNotFound,
    TransferFailed,
    UploadRejected,
)

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (UploadRejected, status.HTTP_400_BAD_REQUEST),
    (FileTooLarge, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (TransferFailed, status.HTTP_502_BAD_GATEWAY),
    (ProcessingFailed, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PersistenceFailed, status.HTTP_502_BAD_GATEWAY),
    (TenantNotFound, status.HTTP_404_NOT_FOUND),
    (TenantConfigIncomplete, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (MuxNotConfigured, status.HTTP_501_NOT_IMPLEMENTED),
    (StoreError, status.HTTP_502_BAD_GATEWAY),
)

_MUX_STATUS_BY_REASON = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "service": status.HTTP_502_BAD_GATEWAY,
    "network": status.HTTP_502_BAD_GATEWAY,
}

_MUX_DETAIL_BY_REASON = {
    "not_found": "Asset not found. Please check the asset or upload id.",
    "unauthorized": "Invalid Mux credentials. Please check MUX_TOKEN_ID and MUX_TOKEN_SECRET.",
    "forbidden": "Mux credentials lack permission for this operation.",
}


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, MuxApiError):
        code = _MUX_STATUS_BY_REASON.get(exc.reason, status.HTTP_502_BAD_GATEWAY)
        return HTTPException(status_code=code, detail=_MUX_DETAIL_BY_REASON.get(exc.reason, str(exc)))
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
