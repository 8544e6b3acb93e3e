from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Literal
from uuid import UUID
from decimal import Decimal
from datetime import datetime

from app.modules.customers.models import AccountMovementType


class CustomerBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    tax_id: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None
    tax_condition: str = Field("CONSUMIDOR_FINAL", max_length=50)
    has_current_account: bool = False
    credit_limit: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    special_discount: Decimal = Field(Decimal("0"), ge=0, le=100, decimal_places=2)

    @field_validator("email", mode="before")
    @classmethod
    def empty_email_as_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("El nombre es obligatorio")
        return v


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    tax_id: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None
    tax_condition: Optional[str] = Field(None, max_length=50)
    has_current_account: Optional[bool] = None
    credit_limit: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    special_discount: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)

    @field_validator("email", mode="before")
    @classmethod
    def empty_email_as_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("name", "tax_condition", "has_current_account", "special_discount")
    @classmethod
    def reject_null(cls, v, info):
        # Sólo corre si el campo vino en el PATCH
        if v is None:
            raise ValueError(f"{info.field_name} no puede ser nulo")
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError(f"{info.field_name} no puede estar vacío")
        return v


class CustomerOut(BaseModel):
    id: UUID
    name: str
    tax_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_condition: str
    has_current_account: bool
    balance: Decimal
    credit_limit: Optional[Decimal] = None
    special_discount: Decimal
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CustomerList(BaseModel):
    customers: List[CustomerOut]
    total: int
    limit: int
    offset: int


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: Literal["EFECTIVO", "TRANSFERENCIA", "OTRO"]
    concept: Optional[str] = Field(None, max_length=200)


class AccountMovementOut(BaseModel):
    id: UUID
    customer_id: UUID
    type: AccountMovementType
    amount: Decimal
    concept: str
    reference: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentResult(BaseModel):
    movement: AccountMovementOut
    balance: Decimal
    cash_movement_id: Optional[UUID] = None


class AccountStatement(BaseModel):
    customer_id: UUID
    balance: Decimal
    movements: List[AccountMovementOut]
