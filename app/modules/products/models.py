from app.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Enum, Text, Uuid, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin, SoftDeleteMixin
from datetime import datetime, timezone
import enum


class StockMovementType(str, enum.Enum):
    """Causa de un movimiento de stock"""
    INITIAL_LOAD = "INVENTARIO_INICIAL"
    MANUAL_ADJUSTMENT = "AJUSTE_MANUAL"
    SALE = "VENTA"
    BULK_IMPORT = "CARGA_MASIVA"


class Category(Base, TenantMixin, TimestampMixin):
    __tablename__ = "categories"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_category_tenant_name"),
    )


class Brand(Base, TenantMixin, TimestampMixin):
    __tablename__ = "brands"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_brand_tenant_name"),
    )


class VehicleModel(Base, TenantMixin, TimestampMixin):
    """Modelo (de vehículo/equipo) con el que un producto es compatible"""
    __tablename__ = "vehicle_models"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    brand_id = Column(Uuid(as_uuid=True), ForeignKey("brands.id"), nullable=True)

    brand = relationship("Brand")

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_vehicle_model_tenant_name"),
    )


class Provider(Base, TenantMixin, TimestampMixin):
    __tablename__ = "providers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_provider_tenant_name"),
    )


class Product(Base, TenantMixin, TimestampMixin, SoftDeleteMixin):
    """
    Producto del catálogo.

    `stock` es una proyección desnormalizada: siempre debe ser igual a la suma
    de los StockMovement del producto. Sólo StockLedgerService la modifica.
    """
    __tablename__ = "products"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    sku = Column(String(50), nullable=False)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    factory_code = Column(String(100), nullable=True)

    purchase_price = Column(Numeric(15, 2), nullable=False, default=0)
    sale_price = Column(Numeric(15, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=21)  # Porcentaje de IVA

    stock = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=5)

    category_id = Column(Uuid(as_uuid=True), ForeignKey("categories.id"), nullable=True)
    provider_id = Column(Uuid(as_uuid=True), ForeignKey("providers.id"), nullable=True)

    # Relationships
    category = relationship("Category")
    provider = relationship("Provider")
    movements = relationship("StockMovement", back_populates="product")
    compatibilities = relationship("ProductCompatibility", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
    )

    @property
    def is_low_stock(self) -> bool:
        return (self.stock or 0) <= (self.min_stock or 0)


class ProductCompatibility(Base, TenantMixin):
    __tablename__ = "product_compatibilities"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    brand_id = Column(Uuid(as_uuid=True), ForeignKey("brands.id"), nullable=False)
    model_id = Column(Uuid(as_uuid=True), ForeignKey("vehicle_models.id"), nullable=False)
    year_from = Column(Integer, nullable=True)
    year_to = Column(Integer, nullable=True)

    product = relationship("Product", back_populates="compatibilities")
    brand = relationship("Brand")
    model = relationship("VehicleModel")


class StockMovement(Base, TenantMixin):
    """Registro inmutable de cada cambio de stock (kardex)"""
    __tablename__ = "stock_movements"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)  # Delta con signo
    type = Column(
        Enum(StockMovementType, native_enum=False, length=30, values_callable=lambda e: [m.value for m in e]),
        nullable=False, index=True
    )
    reference = Column(String(100), nullable=True, index=True)  # Id de venta, etc.
    notes = Column(String(255), nullable=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    product = relationship("Product", back_populates="movements")

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="ck_stock_movement_nonzero"),
    )
