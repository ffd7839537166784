"""
api/responses.py -- Turns gateway IntentResults into HTTP responses.

Status mapping:
  ok                                -> 200
  AUTH_REQUIRED                     -> 401
  INTENT_NOT_DECLARED               -> 404
  INSTABILITY_EXCEEDED              -> 503 + Retry-After
  EXECUTION_FAILED                  -> by provider code (see _PROVIDER_STATUS), else 400
  UNKNOWN                           -> 500

The body is always IntentResultResponse, so clients parse one schema whether
the intent succeeded or not.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from api.models import IntentResultResponse
from core.gateway import ErrorCode, IntentResult

# Seconds a client should wait before retrying an instability rejection.
INSTABILITY_RETRY_AFTER = 5

_GATEWAY_STATUS: dict[ErrorCode, int] = {
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.INTENT_NOT_DECLARED: 404,
    ErrorCode.INSTABILITY_EXCEEDED: 503,
    ErrorCode.EXECUTION_FAILED: 400,
    ErrorCode.UNKNOWN: 500,
}

_PROVIDER_STATUS: dict[str, int] = {
    "INVALID_CREDENTIALS": 401,
    "NO_USER": 401,
    "REQUIRES_RECENT_LOGIN": 401,
    "USER_DISABLED": 403,
    "OPERATION_NOT_ALLOWED": 403,
    "USER_NOT_FOUND": 404,
    "EMAIL_ALREADY_IN_USE": 409,
    "TOO_MANY_REQUESTS": 429,
    "NETWORK_ERROR": 502,
    "PROVIDER_ERROR": 502,
}


def status_for(result: IntentResult) -> int:
    if result.ok or result.error is None:
        return 200
    if result.error.code == ErrorCode.EXECUTION_FAILED and result.error.provider_code:
        return _PROVIDER_STATUS.get(result.error.provider_code, 400)
    return _GATEWAY_STATUS.get(result.error.code, 500)


def intent_response(result: IntentResult, no_store: bool = False) -> JSONResponse:
    """Render an IntentResult. no_store adds Cache-Control for credential routes [M5]."""
    resp = JSONResponse(
        status_code=status_for(result),
        content=IntentResultResponse.from_result(result).model_dump(),
    )
    if result.error is not None and result.error.code == ErrorCode.INSTABILITY_EXCEEDED:
        resp.headers["Retry-After"] = str(INSTABILITY_RETRY_AFTER)
    if no_store:
        resp.headers["Cache-Control"] = "no-store"
    return resp
