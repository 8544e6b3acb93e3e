"""
Carga masiva de productos desde planilla.

1. Se resuelven los nombres únicos de marca, modelo, proveedor y categoría
   (buscar por nombre y crear los que falten).
2. Las filas se procesan en lotes de BULK_IMPORT_CHUNK_SIZE; cada lote es su
   propia transacción, así que un lote fallido no deshace los anteriores.
3. Cada fila hace upsert por (tenant_id, sku); la diferencia de stock queda
   registrada como movimiento CARGA_MASIVA.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional
from uuid import UUID
import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.common.cache import schedule_view_invalidation
from app.modules.inventory.service import StockLedgerService
from app.modules.products.models import (
    Product, Brand, VehicleModel, Provider, Category, ProductCompatibility, StockMovementType
)
from app.modules.products.schemas import BulkImportRow, BulkImportResult

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _to_decimal(value) -> Decimal:
    if value is None or str(value).strip() == "":
        return Decimal("0.00")
    try:
        return Decimal(str(value).strip().replace(",", ".")).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return Decimal("0.00")


def _to_int(value, default: Optional[int] = 0) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(Decimal(str(value).strip().replace(",", ".")))
    except (InvalidOperation, ValueError):
        return default


class BulkImportService:

    def __init__(self, db: Session, chunk_size: Optional[int] = None):
        self.db = db
        self.chunk_size = chunk_size or settings.BULK_IMPORT_CHUNK_SIZE
        self.ledger = StockLedgerService(db)

    def resolve_references(self, model, tenant_id: UUID, names: Iterable[str]) -> Dict[str, UUID]:
        """
        Mapa nombre -> id para un tipo de referencia.

        Los nombres ausentes se crean dentro de un savepoint; si otro proceso
        los creó primero, la violación de unicidad se ignora y se relee la fila.
        """
        names = sorted({n for n in names if n})
        if not names:
            return {}

        existing = self.db.query(model).filter(
            model.tenant_id == tenant_id,
            model.name.in_(names)
        ).all()
        mapping = {row.name: row.id for row in existing}

        for name in names:
            if name in mapping:
                continue
            try:
                with self.db.begin_nested():
                    row = model(tenant_id=tenant_id, name=name)
                    self.db.add(row)
                    self.db.flush()
                mapping[name] = row.id
            except IntegrityError:
                row = self.db.query(model).filter(
                    model.tenant_id == tenant_id,
                    model.name == name
                ).first()
                if row:
                    mapping[name] = row.id

        return mapping

    def _apply_statement_timeout(self):
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(text(f"SET LOCAL statement_timeout = {int(settings.BULK_IMPORT_STATEMENT_TIMEOUT_MS)}"))

    def _upsert_row(self, tenant_id: UUID, row: BulkImportRow, refs: Dict[str, Dict[str, UUID]],
                    user_id: Optional[UUID]) -> str:
        sku = _text(row.sku)
        name = _text(row.name)

        brand_id = refs["brand"].get(_text(row.brand)) if row.brand is not None else None
        model_id = refs["model"].get(_text(row.model)) if row.model is not None else None
        provider_id = refs["provider"].get(_text(row.provider)) if row.provider is not None else None
        category_id = refs["category"].get(_text(row.category)) if row.category is not None else None

        target_stock = _to_int(row.stock, 0)
        year = _to_int(row.year, None)

        values = {
            "name": name,
            "description": _text(row.description) or "",
            "factory_code": _text(row.factory_code),
            "purchase_price": _to_decimal(row.purchase_price),
            "sale_price": _to_decimal(row.sale_price),
            "min_stock": _to_int(row.min_stock, settings.DEFAULT_MIN_STOCK) or settings.DEFAULT_MIN_STOCK,
            "category_id": category_id,
            "provider_id": provider_id,
        }

        product = self.db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.sku == sku
        ).first()

        if product:
            status = "updated"
            for field, value in values.items():
                setattr(product, field, value)
            if product.is_deleted:
                product.restore()
        else:
            status = "created"
            product = Product(tenant_id=tenant_id, sku=sku, stock=0, tax_rate=settings.DEFAULT_TAX_RATE, **values)
            self.db.add(product)
        self.db.flush()

        self.ledger.record_target_stock(
            tenant_id, product, target_stock,
            StockMovementType.BULK_IMPORT,
            notes="Carga masiva",
            user_id=user_id
        )

        if brand_id and model_id:
            compat = self.db.query(ProductCompatibility).filter(
                ProductCompatibility.tenant_id == tenant_id,
                ProductCompatibility.product_id == product.id,
                ProductCompatibility.brand_id == brand_id,
                ProductCompatibility.model_id == model_id,
                ProductCompatibility.year_from == year if year is not None else ProductCompatibility.year_from.is_(None),
                ProductCompatibility.year_to == year if year is not None else ProductCompatibility.year_to.is_(None)
            ).first()
            if not compat:
                self.db.add(ProductCompatibility(
                    tenant_id=tenant_id,
                    product_id=product.id,
                    brand_id=brand_id,
                    model_id=model_id,
                    year_from=year,
                    year_to=year
                ))
                self.db.flush()

        return status

    def import_rows(self, tenant_id: UUID, rows: List[BulkImportRow], user_id: Optional[UUID] = None) -> BulkImportResult:
        start = time.monotonic()
        logger.info(f"Bulk import of {len(rows)} rows started for tenant {tenant_id}")
        result = BulkImportResult()

        refs = {
            "brand": self.resolve_references(Brand, tenant_id, (_text(r.brand) for r in rows)),
            "model": self.resolve_references(VehicleModel, tenant_id, (_text(r.model) for r in rows)),
            "provider": self.resolve_references(Provider, tenant_id, (_text(r.provider) for r in rows)),
            "category": self.resolve_references(Category, tenant_id, (_text(r.category) for r in rows)),
        }
        self.db.commit()

        for offset in range(0, len(rows), self.chunk_size):
            chunk = rows[offset:offset + self.chunk_size]
            created = updated = 0
            errors: List[str] = []

            try:
                self._apply_statement_timeout()
                for row in chunk:
                    if not _text(row.sku) or not _text(row.name):
                        continue
                    try:
                        with self.db.begin_nested():
                            status = self._upsert_row(tenant_id, row, refs, user_id)
                        if status == "created":
                            created += 1
                        else:
                            updated += 1
                    except Exception as e:
                        errors.append(f"Error en SKU {_text(row.sku)}: {e}")

                self.db.commit()

            except Exception as e:
                self.db.rollback()
                logger.error(f"Bulk import chunk at offset {offset} failed for tenant {tenant_id}: {e}")
                result.errors += len(chunk)
                result.details.append(f"Lote desde la fila {offset + 1}: {e}")
                continue

            result.created += created
            result.updated += updated
            result.errors += len(errors)
            result.details.extend(errors)

        logger.info(
            f"Bulk import finished for tenant {tenant_id} in {time.monotonic() - start:.2f}s: "
            f"{result.created} created, {result.updated} updated, {result.errors} errors"
        )
        schedule_view_invalidation(tenant_id, ["inventario"])
        return result
