"""
Pydantic schemas for the order API requests and responses.
"""

import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ..common.types import OrderType


class OrderRequest(BaseModel):
    """Order submission body."""

    model_config = ConfigDict(populate_by_name=True)

    token_in: str = Field(
        ...,
        alias="tokenIn",
        description="Token being sold",
        examples=["SOL"],
    )

    token_out: str = Field(
        ...,
        alias="tokenOut",
        description="Token being bought",
        examples=["USDC"],
    )

    amount: float = Field(
        ...,
        description="Amount of tokenIn to sell",
        examples=[10],
    )

    order_type: OrderType = Field(
        ...,
        alias="orderType",
        description="MARKET, LIMIT or SNIPER",
    )

    @field_validator("token_in", "token_out")
    @classmethod
    def validate_token(cls, v: str, info: ValidationInfo) -> str:
        v = v.strip()
        if not v:
            name = "tokenIn" if info.field_name == "token_in" else "tokenOut"
            raise ValueError(f"{name} is required")
        return v

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("amount must be a finite number")
        if not v > 0:
            raise ValueError("amount must be positive")
        return v


class SubmissionResponse(BaseModel):
    """Returned once an order is accepted."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    status: str = Field(default="pending")
    message: str = Field(
        default="Order submitted successfully. Connect via WebSocket for status updates."
    )


class FieldError(BaseModel):
    field: str
    message: str


class ValidationErrorResponse(BaseModel):
    error: str = "Validation failed"
    details: List[FieldError]


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    components: Dict[str, str]
    details: Optional[Dict[str, Any]] = None
