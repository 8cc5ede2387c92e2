from typing import Any, Optional

from fastapi import HTTPException


def create_response(success: bool, message: str, data: Any = None, error: Optional[Any] = None, **extra):
    response = {"success": success, "message": message}
    if data is not None:
        response["data"] = data
    if error is not None:
        response["error"] = error
    response.update(extra)
    return response


def http_error(status_code: int, message: str, **extra) -> HTTPException:
    """HTTPException whose extra keys end up next to message in the error envelope"""
    if not extra:
        return HTTPException(status_code=status_code, detail=message)
    return HTTPException(status_code=status_code, detail={"message": message, **extra})
