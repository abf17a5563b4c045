"""Base schemas and common types for the member lifecycle API."""

from pydantic import BaseModel, ConfigDict


class LifecycleBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR SCHEMAS
# =============================================================================


class ErrorDetail(LifecycleBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(LifecycleBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str | None = None
