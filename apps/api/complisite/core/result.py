"""
Result envelopes returned by every Complisite route.

    {"success": true,  "data": ...}
    {"success": false, "error": {"kind": "...", "message": "..."}}
"""

from typing import Any, Generic, Literal, TypeVar

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from complisite.core.enums import ErrorKind
from complisite.core.errors import AppError

T = TypeVar("T")


class ErrorBody(BaseModel):
    kind: ErrorKind
    message: str


class Ok(BaseModel, Generic[T]):
    success: Literal[True] = True
    data: T


class Err(BaseModel):
    success: Literal[False] = False
    error: ErrorBody


def ok(data: Any) -> Ok:
    return Ok(data=data)


def err(kind: ErrorKind, message: str) -> Err:
    return Err(error=ErrorBody(kind=kind, message=message))


def err_response(exc: AppError) -> JSONResponse:
    body = err(exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))
