# propledger/schemas.py
"""Request bodies accepted by the HTTP layer, validated before they reach the ledger."""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class CollateralIn(RequestModel):
    property_id: int = Field(..., gt=0)
    token_id: Optional[int] = Field(default=None, ge=0)
    amount: int = Field(..., gt=0)


class BorrowRequest(RequestModel):
    collateral: List[CollateralIn] = Field(..., min_length=1)
    borrow_amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=6)


class RepayRequest(RequestModel):
    borrow_position_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=6)
    payment_method_id: Optional[str] = Field(default=None, min_length=1, max_length=120)


class EstimateQuery(RequestModel):
    collateral_value: Decimal = Field(..., ge=0, max_digits=20, decimal_places=6)
    borrow_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=20, decimal_places=6)


class RentPaymentRequest(RequestModel):
    property_id: int = Field(..., gt=0)
    period_start: date
    period_end: date
    gross_amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=6)
    management_fee_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def _period_order(self):
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class DistributeRequest(RequestModel):
    property_ids: Optional[List[int]] = None
    dry_run: bool = False


class DepositRequest(RequestModel):
    amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=6)
    payment_method_id: str = Field(..., min_length=1, max_length=120)


class WithdrawRequest(RequestModel):
    amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=6)
    destination: Optional[str] = Field(default=None, min_length=1, max_length=120)


class ResetVaultRequest(RequestModel):
    user_id: int = Field(..., gt=0)
