"""Common response schemas."""

from typing import Generic, Literal, Optional, TypeVar, Union

from pydantic import BaseModel

T = TypeVar("T")


class ApiSuccess(BaseModel, Generic[T]):
    """Upstream call that returned usable data."""
    ok: Literal[True] = True
    data: T


class ApiFailure(BaseModel):
    """Upstream call that failed at the network or HTTP level."""
    ok: Literal[False] = False
    error: str
    status_code: Optional[int] = None


# Tagged result of an upstream call; branch on ``ok``
ApiResult = Union[ApiSuccess, ApiFailure]


class HealthResponse(BaseModel):
    status: str
    version: str = "1.0.0"
    crm_api: str
