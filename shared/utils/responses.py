"""
shared/utils/responses.py
Standard response envelopes: {"success": true, "data": ...} on success,
{"success": false, "error": ...} on failure.
"""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def envelope(data: Any = None) -> dict:
    return {"success": True, "data": data}


def error_response(
    status_code: int,
    error: str,
    details: Any = None,
    headers: Optional[dict] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    content = {"success": False, "error": error}
    if details is not None:
        content["details"] = jsonable_encoder(details)
    if request_id:
        content["request_id"] = request_id
    return JSONResponse(status_code=status_code, content=content, headers=headers)
