from __future__ import annotations

from pydantic import BaseModel


class FunctionResult(BaseModel):
    status: str


class DispatchResponse(BaseModel):
    status: str
    fetched: int = 0
    sent: int = 0
    failed: int = 0
