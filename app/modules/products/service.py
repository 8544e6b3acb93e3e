from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_, func
from uuid import UUID
from typing import Optional
import math
import logging

from app.common.cache import schedule_view_invalidation
from app.common.exceptions import DomainError, ConflictError, InvalidReference, NotFound, TransactionAborted
from app.modules.inventory.service import StockLedgerService
from app.modules.products.models import (
    Product, Category, Provider, Brand, VehicleModel, ProductCompatibility, StockMovementType
)
from app.modules.products.schemas import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)


def _is_sku_violation(error: IntegrityError) -> bool:
    message = str(error.orig)
    return "uq_product_tenant_sku" in message or "products.sku" in message


class ProductService:
    """Catálogo de productos. Todo cambio de stock pasa por el libro de stock."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedgerService(db)

    def _base_query(self, tenant_id: UUID):
        return self.db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.deleted_at.is_(None)
        )

    def _ensure_reference(self, model, tenant_id: UUID, ref_id: Optional[UUID], label: str):
        if ref_id is None:
            return
        exists = self.db.query(model.id).filter(model.id == ref_id, model.tenant_id == tenant_id).first()
        if not exists:
            raise InvalidReference(f"{label}: referencia inexistente o de otro comercio")

    def _ensure_unique_sku(self, tenant_id: UUID, sku: str, exclude_id: Optional[UUID] = None):
        query = self.db.query(Product.id).filter(Product.tenant_id == tenant_id, Product.sku == sku)
        if exclude_id:
            query = query.filter(Product.id != exclude_id)
        if query.first():
            raise ConflictError(f"Ya existe un producto con el SKU '{sku}'")

    def get_product(self, tenant_id: UUID, product_id: UUID) -> Product:
        product = self._base_query(tenant_id).options(
            selectinload(Product.category),
            selectinload(Product.provider),
            selectinload(Product.compatibilities)
        ).filter(Product.id == product_id).first()
        if not product:
            raise NotFound("Producto no encontrado")
        return product

    def list_products(self, tenant_id: UUID, page: int = 1, limit: int = 20,
                      search: Optional[str] = None, category_id: Optional[UUID] = None,
                      low_stock: Optional[bool] = None) -> dict:
        query = self._base_query(tenant_id)

        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.factory_code.ilike(pattern),
                Product.description.ilike(pattern)
            ))
        if category_id:
            query = query.filter(Product.category_id == category_id)
        if low_stock:
            query = query.filter(Product.stock <= Product.min_stock)

        total = query.with_entities(func.count(Product.id)).scalar() or 0
        products = query.options(
            selectinload(Product.category),
            selectinload(Product.provider),
            selectinload(Product.compatibilities)
        ).order_by(Product.name.asc()).offset((page - 1) * limit).limit(limit).all()

        total_pages = math.ceil(total / limit) if total else 0
        return {
            "data": products,
            "total": total,
            "page": page,
            "limit": limit,
            "hasNext": page < total_pages,
            "hasPrev": page > 1
        }

    def create_product(self, tenant_id: UUID, data: ProductCreate, user_id: Optional[UUID] = None) -> Product:
        """
        Crear producto. El stock inicial no se escribe directo: se registra como
        movimiento INVENTARIO_INICIAL, así stock == Σ movimientos desde el inicio.
        """
        try:
            self._ensure_unique_sku(tenant_id, data.sku)
            self._ensure_reference(Category, tenant_id, data.category_id, "Categoría")
            self._ensure_reference(Provider, tenant_id, data.provider_id, "Proveedor")

            product = Product(
                tenant_id=tenant_id,
                sku=data.sku,
                name=data.name,
                description=data.description,
                factory_code=data.factory_code,
                purchase_price=data.purchase_price,
                sale_price=data.sale_price,
                tax_rate=data.tax_rate,
                stock=0,
                min_stock=data.min_stock,
                category_id=data.category_id,
                provider_id=data.provider_id
            )
            self.db.add(product)
            self.db.flush()

            if data.stock:
                self.ledger.record(
                    tenant_id=tenant_id,
                    product_id=product.id,
                    quantity=data.stock,
                    movement_type=StockMovementType.INITIAL_LOAD,
                    notes="Stock inicial al crear producto",
                    user_id=user_id
                )

            for compat in data.compatibilities:
                self._ensure_reference(Brand, tenant_id, compat.brand_id, "Marca")
                self._ensure_reference(VehicleModel, tenant_id, compat.model_id, "Modelo")
                self.db.add(ProductCompatibility(
                    tenant_id=tenant_id,
                    product_id=product.id,
                    brand_id=compat.brand_id,
                    model_id=compat.model_id,
                    year_from=compat.year_from,
                    year_to=compat.year_to
                ))

            self.db.commit()
            logger.info(f"Product {product.sku} created for tenant {tenant_id}")

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if _is_sku_violation(e):
                raise ConflictError(f"Ya existe un producto con el SKU '{data.sku}'")
            logger.warning(f"Integrity error creating product: {e.orig}")
            raise ConflictError("Los datos del producto violan una restricción de integridad")
        except Exception as e:
            self.db.rollback()
            logger.exception("Error creating product")
            raise TransactionAborted(f"Error al crear producto: {str(e)}")

        schedule_view_invalidation(tenant_id, ["inventario"])
        return self.get_product(tenant_id, product.id)

    def update_product(self, tenant_id: UUID, product_id: UUID, data: ProductUpdate,
                       user_id: Optional[UUID] = None) -> Product:
        """Actualizar producto; un cambio de stock se registra como AJUSTE_MANUAL."""
        try:
            product = self._base_query(tenant_id).filter(Product.id == product_id).first()
            if not product:
                raise NotFound("Producto no encontrado")

            update_data = data.model_dump(exclude_unset=True)
            target_stock = update_data.pop("stock", None)

            if "sku" in update_data and update_data["sku"] != product.sku:
                self._ensure_unique_sku(tenant_id, update_data["sku"], exclude_id=product.id)
            if "category_id" in update_data:
                self._ensure_reference(Category, tenant_id, update_data["category_id"], "Categoría")
            if "provider_id" in update_data:
                self._ensure_reference(Provider, tenant_id, update_data["provider_id"], "Proveedor")

            for field, value in update_data.items():
                setattr(product, field, value)
            self.db.flush()

            if target_stock is not None:
                self.ledger.record_target_stock(
                    tenant_id, product, target_stock,
                    StockMovementType.MANUAL_ADJUSTMENT,
                    notes="Ajuste por edición de producto",
                    user_id=user_id
                )

            self.db.commit()

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if _is_sku_violation(e):
                raise ConflictError("Ya existe un producto con ese SKU")
            logger.warning(f"Integrity error updating product {product_id}: {e.orig}")
            raise ConflictError("Los datos del producto violan una restricción de integridad")
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error updating product {product_id}")
            raise TransactionAborted(f"Error al actualizar producto: {str(e)}")

        schedule_view_invalidation(tenant_id, ["inventario"])
        return self.get_product(tenant_id, product_id)

    def delete_product(self, tenant_id: UUID, product_id: UUID) -> dict:
        """Baja lógica: las líneas de venta y movimientos conservan su referencia."""
        product = self._base_query(tenant_id).filter(Product.id == product_id).first()
        if not product:
            raise NotFound("Producto no encontrado")

        product.soft_delete()
        self.db.commit()

        schedule_view_invalidation(tenant_id, ["inventario"])
        return {"message": "Producto eliminado correctamente"}
