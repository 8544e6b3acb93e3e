from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc
import logging

from app.common.exceptions import (
    DomainError, InvalidReference, InsufficientStock, PolicyViolation, TransactionAborted
)
from app.common.cache import schedule_view_invalidation
from app.modules.products.models import Product, StockMovement, StockMovementType

logger = logging.getLogger(__name__)


class StockLedgerService:
    """
    Libro de stock: cada cambio de Product.stock se hace junto con un
    StockMovement inmutable, en la misma transacción.

    Los métodos `record*` sólo hacen flush; quien llama decide el commit.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        tenant_id: UUID,
        product_id: UUID,
        quantity: int,
        movement_type: StockMovementType,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[UUID] = None
    ) -> StockMovement:
        """
        Aplicar un delta de stock y registrar su movimiento.

        Las salidas usan un decremento condicional
        (UPDATE ... SET stock = stock - q WHERE stock >= q): si otra
        transacción consumió el stock antes, no se actualiza ninguna fila.
        """
        if quantity == 0:
            raise PolicyViolation("La cantidad del movimiento no puede ser cero")

        filters = [
            Product.id == product_id,
            Product.tenant_id == tenant_id,
            Product.deleted_at.is_(None),
        ]
        if quantity < 0:
            filters.append(Product.stock >= -quantity)

        updated = self.db.query(Product).filter(and_(*filters)).update(
            {Product.stock: Product.stock + quantity},
            synchronize_session="fetch"
        )

        if updated == 0:
            exists = self.db.query(Product.id).filter(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.deleted_at.is_(None)
            ).first()
            if not exists:
                raise InvalidReference("El producto no existe o no pertenece a este comercio")
            raise InsufficientStock(f"Stock insuficiente para el producto ID {product_id}")

        movement = StockMovement(
            tenant_id=tenant_id,
            product_id=product_id,
            quantity=quantity,
            type=movement_type,
            reference=reference,
            notes=notes,
            created_by=user_id
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    def record_sale_exit(self, tenant_id: UUID, product_id: UUID, quantity: int,
                         sale_id: UUID, user_id: Optional[UUID] = None) -> StockMovement:
        return self.record(
            tenant_id=tenant_id,
            product_id=product_id,
            quantity=-quantity,
            movement_type=StockMovementType.SALE,
            reference=str(sale_id),
            notes=f"Venta registrada: {sale_id}",
            user_id=user_id
        )

    def record_target_stock(self, tenant_id: UUID, product: Product, target: int,
                            movement_type: StockMovementType, notes: Optional[str] = None,
                            user_id: Optional[UUID] = None) -> Optional[StockMovement]:
        """Llevar el stock a `target` registrando la diferencia; None si no cambia."""
        delta = int(target) - int(product.stock or 0)
        if delta == 0:
            return None
        return self.record(
            tenant_id=tenant_id,
            product_id=product.id,
            quantity=delta,
            movement_type=movement_type,
            notes=notes,
            user_id=user_id
        )

    def adjust_stock(self, tenant_id: UUID, product_id: UUID, quantity: int,
                     notes: Optional[str], user_id: UUID) -> StockMovement:
        """Ajuste manual de stock (positivo o negativo)."""
        try:
            movement = self.record(
                tenant_id=tenant_id,
                product_id=product_id,
                quantity=quantity,
                movement_type=StockMovementType.MANUAL_ADJUSTMENT,
                notes=notes or "Ajuste manual de stock",
                user_id=user_id
            )
            self.db.commit()
            self.db.refresh(movement)
            logger.info(f"Stock adjusted for product {product_id} by {quantity} (tenant {tenant_id})")

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Stock adjustment failed for product {product_id}")
            raise TransactionAborted(f"Error al ajustar stock: {str(e)}")

        schedule_view_invalidation(tenant_id, ["inventario"])
        return movement

    def list_movements(self, tenant_id: UUID, product_id: Optional[UUID] = None,
                       limit: int = 100, offset: int = 0) -> dict:
        query = self.db.query(StockMovement).filter(StockMovement.tenant_id == tenant_id)

        if product_id:
            product = self.db.query(Product.id).filter(
                Product.id == product_id,
                Product.tenant_id == tenant_id
            ).first()
            if not product:
                raise InvalidReference("Producto no encontrado")
            query = query.filter(StockMovement.product_id == product_id)

        total = query.count()
        movements: List[StockMovement] = query.order_by(
            desc(StockMovement.created_at)
        ).offset(offset).limit(limit).all()

        return {
            "movements": movements,
            "total": total,
            "limit": limit,
            "offset": offset
        }
