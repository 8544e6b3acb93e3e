"""
Registro de ventas.

SaleService.register_sale compone en una sola transacción:
- la venta y sus líneas,
- la salida de stock de cada línea (decremento condicional + movimiento VENTA),
- el ingreso en la caja abierta (EFECTIVO),
- el débito en cuenta corriente (CUENTA_CORRIENTE).

Cualquier fallo deshace todo. Las vistas cacheadas se invalidan recién
después del commit.
"""
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID
import logging

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.common.cache import schedule_view_invalidation
from app.common.exceptions import (
    DomainError, InsufficientStock, InvalidReference, NotFound, PermissionDenied,
    PolicyViolation, TransactionAborted
)
from app.common.middleware import request_id_var
from app.modules.auth.permissions import has_permission
from app.modules.auth.schemas import AuthContext
from app.modules.cash.service import CashSessionService
from app.modules.customers.models import Customer
from app.modules.customers.service import ReceivableLedger
from app.modules.inventory.service import StockLedgerService
from app.modules.products.models import Product
from app.modules.sales.models import Sale, SaleLine, SaleStatus, PaymentMethod
from app.modules.sales.pricing import price_line, sale_total, PricedLine
from app.modules.sales.schemas import SaleCreate, SaleRegistered

logger = logging.getLogger(__name__)

SALE_PERMISSION = "vta:cobrar"
INVALIDATED_VIEWS = ["ventas", "inventario", "caja", "dashboard"]


class SaleService:
    """Servicio de registro y consulta de ventas"""

    def __init__(self, db: Session):
        self.db = db
        self.stock = StockLedgerService(db)
        self.cash = CashSessionService(db)
        self.receivables = ReceivableLedger(db)

    def _find_by_idempotency_key(self, tenant_id: UUID, key: str) -> Optional[Sale]:
        return self.db.query(Sale).options(selectinload(Sale.lines)).filter(
            Sale.tenant_id == tenant_id,
            Sale.idempotency_key == key
        ).first()

    def _registered(self, sale: Sale, replayed: bool) -> SaleRegistered:
        result = SaleRegistered.model_validate(sale)
        result.replayed = replayed
        return result

    @staticmethod
    def _merge_items(data: SaleCreate) -> "OrderedDict[UUID, int]":
        quantities: "OrderedDict[UUID, int]" = OrderedDict()
        for item in data.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
        return quantities

    def register_sale(self, auth_context: AuthContext, data: SaleCreate) -> SaleRegistered:
        """
        Registrar una venta.

        Errores: PermissionDenied, PolicyViolation (carrito vacío, cuenta
        corriente no habilitada), InvalidReference (producto o cliente),
        InsufficientStock, NoOpenCashSession, TransactionAborted.
        """
        tenant_id = auth_context.tenant_id

        if not has_permission(auth_context.permissions, SALE_PERMISSION):
            raise PermissionDenied()

        if not data.items:
            raise PolicyViolation("El carrito está vacío")

        if data.idempotency_key:
            existing = self._find_by_idempotency_key(tenant_id, data.idempotency_key)
            if existing:
                logger.info(f"Sale replay for idempotency key {data.idempotency_key} (tenant {tenant_id})")
                return self._registered(existing, replayed=True)

        quantities = self._merge_items(data)

        products = self.db.query(Product).filter(
            Product.id.in_(list(quantities.keys())),
            Product.tenant_id == tenant_id,
            Product.deleted_at.is_(None)
        ).all()
        products_by_id: Dict[UUID, Product] = {p.id: p for p in products}
        if len(products_by_id) != len(quantities):
            raise InvalidReference("Algunos productos ya no existen o no pertenecen a este comercio")

        discount = Decimal("0")
        has_current_account = False
        customer = None
        if data.customer_id:
            customer = self.db.query(Customer).filter(
                Customer.id == data.customer_id,
                Customer.tenant_id == tenant_id,
                Customer.deleted_at.is_(None)
            ).first()
            if not customer:
                raise InvalidReference("Cliente no encontrado o inválido")
            discount = Decimal(customer.special_discount or 0)
            has_current_account = bool(customer.has_current_account)

        if data.payment_method == PaymentMethod.ACCOUNT and not has_current_account:
            raise PolicyViolation("El cliente seleccionado no tiene habilitada la Cuenta Corriente")

        priced: Dict[UUID, PricedLine] = OrderedDict()
        for product_id, quantity in quantities.items():
            product = products_by_id[product_id]
            priced[product_id] = price_line(product.sale_price, product.tax_rate, quantity, discount)

        # Verificación previa; el decremento condicional vuelve a validar dentro de la transacción
        for product_id, quantity in quantities.items():
            if quantity > (products_by_id[product_id].stock or 0):
                raise InsufficientStock(f"Stock insuficiente para el producto ID {product_id}")

        total = sale_total(priced.values())

        try:
            sale = Sale(
                tenant_id=tenant_id,
                total=total,
                payment_method=data.payment_method,
                status=SaleStatus.COMPLETED,
                customer_id=customer.id if customer else None,
                idempotency_key=data.idempotency_key,
                created_by=auth_context.user_id
            )
            for product_id, line in priced.items():
                sale.lines.append(SaleLine(
                    tenant_id=tenant_id,
                    product_id=product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.subtotal
                ))
            self.db.add(sale)
            self.db.flush()

            for product_id, line in priced.items():
                self.stock.record_sale_exit(tenant_id, product_id, line.quantity, sale.id, auth_context.user_id)

            if data.payment_method == PaymentMethod.CASH:
                self.cash.add_sale_income(tenant_id, sale.id, total, auth_context.user_id)

            if data.payment_method == PaymentMethod.ACCOUNT and customer and total > 0:
                self.receivables.post_sale_debit(tenant_id, customer.id, sale.id, total, auth_context.user_id)

            self.db.commit()
            sale_id = sale.id

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if data.idempotency_key:
                # Una venta concurrente con la misma clave ganó la carrera
                existing = self._find_by_idempotency_key(tenant_id, data.idempotency_key)
                if existing:
                    return self._registered(existing, replayed=True)
            logger.exception(f"Integrity error registering sale (request {request_id_var.get()})")
            raise TransactionAborted(f"Error crítico al procesar la venta: {str(e.orig)}")
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error registering sale (request {request_id_var.get()})")
            raise TransactionAborted(f"Error crítico al procesar la venta: {str(e)}")

        logger.info(f"Sale {sale_id} registered for tenant {tenant_id}: total {total}, {data.payment_method.value}")
        schedule_view_invalidation(tenant_id, INVALIDATED_VIEWS)
        return self._registered(self.get_sale(tenant_id, sale_id), replayed=False)

    def get_sale(self, tenant_id: UUID, sale_id: UUID) -> Sale:
        sale = self.db.query(Sale).options(selectinload(Sale.lines)).filter(
            Sale.id == sale_id,
            Sale.tenant_id == tenant_id
        ).first()
        if not sale:
            raise NotFound("Venta no encontrada")
        return sale

    def list_sales(self, tenant_id: UUID, limit: int = 100, offset: int = 0,
                   date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> dict:
        query = self.db.query(Sale).filter(Sale.tenant_id == tenant_id)
        if date_from:
            query = query.filter(Sale.date >= date_from)
        if date_to:
            query = query.filter(Sale.date <= date_to)

        total = query.count()
        sales = query.options(selectinload(Sale.lines)).order_by(desc(Sale.date)).offset(offset).limit(limit).all()
        return {"sales": sales, "total": total, "limit": limit, "offset": offset}
