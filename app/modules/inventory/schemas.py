from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from app.modules.products.models import StockMovementType


class StockAdjustment(BaseModel):
    quantity: int = Field(..., description="Delta de stock (positivo entra, negativo sale)")
    notes: Optional[str] = Field(None, max_length=255, description="Motivo del ajuste")

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v):
        if v == 0:
            raise ValueError("La cantidad del ajuste no puede ser cero")
        return v


class StockMovementOut(BaseModel):
    id: UUID
    product_id: UUID
    quantity: int
    type: StockMovementType
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class StockMovementList(BaseModel):
    movements: List[StockMovementOut]
    total: int
    limit: int
    offset: int
