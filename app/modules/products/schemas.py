from pydantic import BaseModel, Field, field_validator
from uuid import UUID
from typing import Optional, List, Union
from decimal import Decimal
from datetime import datetime

from app.core.config import settings


# Schema base para paginación estándar
class PaginatedResponse(BaseModel):
    """Respuesta paginada estándar para todas las listas"""
    total: int
    page: int
    limit: int
    hasNext: bool
    hasPrev: bool


class CategoryResponse(BaseModel):
    id: UUID
    name: str

    class Config:
        from_attributes = True


class ProviderResponse(BaseModel):
    id: UUID
    name: str

    class Config:
        from_attributes = True


class CompatibilityCreate(BaseModel):
    brand_id: UUID
    model_id: UUID
    year_from: Optional[int] = Field(None, ge=1900, le=2100)
    year_to: Optional[int] = Field(None, ge=1900, le=2100)


class CompatibilityOut(BaseModel):
    id: UUID
    brand_id: UUID
    model_id: UUID
    year_from: Optional[int] = None
    year_to: Optional[int] = None

    class Config:
        from_attributes = True


class ProductCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    factory_code: Optional[str] = Field(None, max_length=100)
    purchase_price: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    sale_price: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    tax_rate: Decimal = Field(Decimal(settings.DEFAULT_TAX_RATE), ge=0, le=100, description="Porcentaje de IVA")
    stock: int = Field(0, ge=0, description="Stock inicial")
    min_stock: int = Field(settings.DEFAULT_MIN_STOCK, ge=0)
    category_id: Optional[UUID] = None
    provider_id: Optional[UUID] = None
    compatibilities: List[CompatibilityCreate] = Field(default_factory=list)

    @field_validator("sku", "name")
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("El campo no puede estar vacío")
        return v


class ProductUpdate(BaseModel):
    sku: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    factory_code: Optional[str] = Field(None, max_length=100)
    purchase_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    sale_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    stock: Optional[int] = Field(None, ge=0, description="Stock objetivo; la diferencia se registra como ajuste")
    min_stock: Optional[int] = Field(None, ge=0)
    category_id: Optional[UUID] = None
    provider_id: Optional[UUID] = None

    @field_validator("sku", "name", "purchase_price", "sale_price", "tax_rate", "stock", "min_stock")
    @classmethod
    def reject_null(cls, v, info):
        # Sólo corre si el campo vino en el PATCH
        if v is None:
            raise ValueError(f"{info.field_name} no puede ser nulo")
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("El campo no puede estar vacío")
        return v


class ProductOut(BaseModel):
    id: UUID
    sku: str
    name: str
    description: Optional[str] = None
    factory_code: Optional[str] = None
    purchase_price: Decimal
    sale_price: Decimal
    tax_rate: Decimal
    stock: int
    min_stock: int
    is_low_stock: bool = False
    category: Optional[CategoryResponse] = None
    provider: Optional[ProviderResponse] = None
    compatibilities: List[CompatibilityOut] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProductListResponse(PaginatedResponse):
    data: List[ProductOut]


# Carga masiva: los valores llegan tal cual de la planilla
CellValue = Optional[Union[str, int, float, Decimal]]


class BulkImportRow(BaseModel):
    sku: CellValue = None
    name: CellValue = None
    description: CellValue = None
    factory_code: CellValue = None
    brand: CellValue = None
    model: CellValue = None
    provider: CellValue = None
    category: CellValue = None
    purchase_price: CellValue = None
    sale_price: CellValue = None
    stock: CellValue = None
    min_stock: CellValue = None
    year: CellValue = None


class BulkImportRequest(BaseModel):
    rows: List[BulkImportRow] = Field(..., min_length=1)


class BulkImportResult(BaseModel):
    created: int = 0
    updated: int = 0
    errors: int = 0
    details: List[str] = Field(default_factory=list)
