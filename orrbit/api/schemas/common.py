"""
Common Pydantic schemas for API responses and requests.
Provides base classes and common data structures.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from orrbit.utils.billing_calendar import utcnow


class APIResponse(BaseModel):
    """Base API response model."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class SuccessResponse(APIResponse):
    """Success response model."""
    data: Optional[Any] = None


class ErrorResponse(APIResponse):
    """Error response model."""
    success: bool = False
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class PaginatedResponse(SuccessResponse):
    """Paginated response model."""
    data: List[Any]
    pagination: Dict[str, Any] = Field(description="Pagination metadata")


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=utcnow)
    version: str = "0.1.0"
    services: Dict[str, str] = Field(default_factory=dict)


# Common field types
StellarAccountField = Field(
    pattern=r"^G[A-Z2-7]{55}$",
    description="Stellar account id"
)

TxHashField = Field(
    pattern=r"^[0-9a-fA-F]{64}$",
    description="Transaction hash (64 hex characters)"
)

AmountField = Field(
    gt=Decimal("0"),
    max_digits=20,
    decimal_places=7,
    description="Amount in XLM"
)

TxHash = Annotated[str, TxHashField]
XlmAmount = Annotated[Decimal, AmountField]


def create_success_response(data: Any = None, message: str = None) -> SuccessResponse:
    """Create a success response."""
    return SuccessResponse(data=data, message=message)


def create_error_response(
    message: str,
    error_code: str = None,
    details: Dict[str, Any] = None
) -> ErrorResponse:
    """Create an error response."""
    return ErrorResponse(
        message=message,
        error_code=error_code,
        details=details
    )


def create_paginated_response(
    data: List[Any],
    total: int,
    page: int,
    limit: int
) -> PaginatedResponse:
    """Create a paginated response."""
    return PaginatedResponse(
        data=data,
        pagination={
            "total": total,
            "page": page,
            "limit": limit,
            "has_next": page * limit < total,
            "has_previous": page > 1
        }
    )
