"""Data Transfer Objects for the LNURL-pay application layer."""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


class PayRequestResponseDTO(BaseModel):
    """Discovery response (LUD-06 payRequest)."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "callback": "https://example.com/pay/callback/alice",
                "maxSendable": 10000000,
                "minSendable": 100000,
                "metadata": '[["text/identifier","alice@example.com"],...]',
                "tag": "payRequest",
            }
        },
    )

    callback: str
    max_sendable: int = Field(..., alias="maxSendable")
    min_sendable: int = Field(..., alias="minSendable")
    metadata: str
    tag: Literal["payRequest"] = "payRequest"


class InvoiceResponseDTO(BaseModel):
    """Callback success response carrying the payment request."""

    pr: str
    routes: List[str] = Field(default_factory=list)


class ErrorResponseDTO(BaseModel):
    """LNURL error shape shared by every failing request."""

    status: Literal["ERROR"] = "ERROR"
    reason: str
