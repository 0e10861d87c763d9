"""
shamba.api.responses — Result → HTTP
======================================

Routes return the service :class:`Result` body unchanged (``{data,
error}``); only the status code is derived from the error kind.
"""

from __future__ import annotations

from fastapi import status
from fastapi.responses import JSONResponse

from shamba.services.result import ErrorKind, Result

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.UPSTREAM: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def respond(result: Result, *, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    if result.ok:
        code = success_status
    else:
        code = _STATUS_BY_KIND.get(result.error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=code, content=result.to_dict())
