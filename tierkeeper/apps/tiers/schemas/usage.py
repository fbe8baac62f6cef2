"""
Pydantic schemas for usage quota endpoints.
"""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from tierkeeper.core.enums import FeatureKind, QuotaOutcome


class QuotaDecisionResponse(BaseModel):
    """Schema for GET /usage/{kind}/can-create."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "kind": "courses",
                "allowed": False,
                "outcome": "quota_exceeded",
                "used": 5,
                "limit": 5,
            }
        }
    )

    kind: FeatureKind
    allowed: bool
    outcome: QuotaOutcome
    used: int | None = None
    limit: Annotated[
        int | None, Field(description="Free-tier limit; null for premium tiers.")
    ] = None


class CreationErrorRequest(BaseModel):
    """Schema for reporting a failed feature creation."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"message": "Usage limit exceeded. Upgrade to premium."}
        }
    )

    message: Annotated[
        str, Field(max_length=2000, description="Error message from the failed write.")
    ]


class CreationErrorResponse(BaseModel):
    """Whether the error was a quota denial that opened the upgrade prompt."""

    handled: bool
    kind: FeatureKind


class UpgradePromptResponse(BaseModel):
    """Current upgrade dialog state for the user."""

    open: bool
    kind: FeatureKind | None = None


__all__ = [
    "CreationErrorRequest",
    "CreationErrorResponse",
    "QuotaDecisionResponse",
    "UpgradePromptResponse",
]
