from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import datetime

from app.modules.cash.models import CashSessionStatus, CashMovementType


class CashSessionOpen(BaseModel):
    opening_amount: Decimal = Field(Decimal("0"), ge=0, decimal_places=2, description="Fondo inicial de caja")


class CashSessionClose(BaseModel):
    counted_cash: Decimal = Field(..., ge=0, decimal_places=2, description="Efectivo contado al cierre")


class CashMovementCreate(BaseModel):
    type: CashMovementType
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    concept: str = Field(..., max_length=255)

    @field_validator("concept")
    @classmethod
    def validate_concept(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("El concepto es obligatorio")
        return v


class CashMovementOut(BaseModel):
    id: UUID
    session_id: UUID
    type: CashMovementType
    amount: Decimal
    concept: str
    reference: Optional[str] = None
    reversal_of_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CashSessionOut(BaseModel):
    id: UUID
    status: CashSessionStatus
    opening_amount: Decimal
    closing_amount: Optional[Decimal] = None
    expected_amount: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None
    opened_by: Optional[UUID] = None
    closed_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class CashSessionDetail(CashSessionOut):
    running_balance: Decimal
    movements: List[CashMovementOut] = []


class CurrentCashSessionResponse(BaseModel):
    session: Optional[CashSessionDetail] = None


class CashSessionCloseResult(BaseModel):
    session_id: UUID
    expected: Decimal
    counted: Decimal
    difference: Decimal


class LastClosingResponse(BaseModel):
    amount: Decimal
