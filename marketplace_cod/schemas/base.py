"""
Base Schema Classes for Pydantic Models

RULE: All schemas that read from ORM models MUST inherit from BaseResponseSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for schemas that read from ORM models.

    Usage:
        class CodReconciliationResponse(BaseResponseSchema):
            id: UUID
            status: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class OperationResult(BaseModel):
    """
    Outcome of a guarded operation.

    Guard violations (wrong state, non-COD order, insufficient balance) come
    back as ``success=False`` with a message explaining why. They are never
    raised.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    message: str

    @classmethod
    def ok(cls, message: str, **payload):
        return cls(success=True, message=message, **payload)

    @classmethod
    def fail(cls, message: str, **payload):
        return cls(success=False, message=message, **payload)

    def __bool__(self) -> bool:
        return self.success

