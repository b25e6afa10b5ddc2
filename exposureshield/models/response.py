"""Error response model shared by all exception handlers."""

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ErrorResponse(BaseModel):
    """JSON body for every failed request.

    Attributes:
        ok: Always False
        error: Client-safe message (never internals or stack traces)
        detail: Optional field-level explanation for validation failures
        correlation_id: Request tracking ID for matching server-side logs
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ok: bool = False
    error: str
    detail: Optional[str] = None
    correlation_id: Optional[str] = None
