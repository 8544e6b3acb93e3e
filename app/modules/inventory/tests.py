"""
Tests para el libro de stock (kardex)

Cubren:
- Decremento condicional (nunca stock negativo)
- Ajustes manuales por servicio y por API
- Conservación: stock == Σ movimientos
"""

import pytest
from uuid import uuid4

from app.common.exceptions import InsufficientStock, InvalidReference, PolicyViolation
from app.modules.inventory.service import StockLedgerService
from app.modules.products.models import StockMovement, StockMovementType


def _ledger_total(db, product_id):
    return sum(m.quantity for m in db.query(StockMovement).filter(StockMovement.product_id == product_id).all())


class TestStockLedgerService:
    """Tests para StockLedgerService"""

    def test_record_entry_and_exit(self, db_session, sample_tenant, make_product):
        product = make_product(stock=5)
        ledger = StockLedgerService(db_session)

        ledger.record(sample_tenant.id, product.id, 3, StockMovementType.MANUAL_ADJUSTMENT, notes="Compra")
        ledger.record(sample_tenant.id, product.id, -4, StockMovementType.MANUAL_ADJUSTMENT, notes="Rotura")
        db_session.commit()

        db_session.refresh(product)
        assert product.stock == 4
        assert _ledger_total(db_session, product.id) == 4

    def test_exit_beyond_stock_rejected(self, db_session, sample_tenant, make_product):
        """El decremento condicional no actualiza filas si no alcanza el stock"""
        product = make_product(stock=5)

        with pytest.raises(InsufficientStock):
            StockLedgerService(db_session).record(
                sample_tenant.id, product.id, -6, StockMovementType.MANUAL_ADJUSTMENT
            )
        db_session.rollback()

        db_session.refresh(product)
        assert product.stock == 5

    def test_exit_to_exactly_zero(self, db_session, sample_tenant, make_product):
        product = make_product(stock=2)

        StockLedgerService(db_session).record_sale_exit(sample_tenant.id, product.id, 2, uuid4())
        db_session.commit()

        db_session.refresh(product)
        assert product.stock == 0

    def test_zero_quantity_rejected(self, db_session, sample_tenant, make_product):
        product = make_product(stock=2)

        with pytest.raises(PolicyViolation):
            StockLedgerService(db_session).record(sample_tenant.id, product.id, 0, StockMovementType.MANUAL_ADJUSTMENT)

    def test_unknown_or_foreign_product(self, db_session, sample_tenant, other_tenant, make_product):
        product = make_product(stock=2)
        ledger = StockLedgerService(db_session)

        with pytest.raises(InvalidReference):
            ledger.record(sample_tenant.id, uuid4(), 1, StockMovementType.MANUAL_ADJUSTMENT)
        with pytest.raises(InvalidReference):
            ledger.record(other_tenant.id, product.id, -1, StockMovementType.MANUAL_ADJUSTMENT)

    def test_sale_exit_movement(self, db_session, sample_tenant, make_product):
        product = make_product(stock=5)
        sale_id = uuid4()

        movement = StockLedgerService(db_session).record_sale_exit(sample_tenant.id, product.id, 2, sale_id)

        assert movement.type == StockMovementType.SALE
        assert movement.quantity == -2
        assert movement.reference == str(sale_id)

    def test_record_target_stock(self, db_session, sample_tenant, make_product):
        product = make_product(stock=5)
        ledger = StockLedgerService(db_session)

        assert ledger.record_target_stock(sample_tenant.id, product, 5, StockMovementType.BULK_IMPORT) is None
        movement = ledger.record_target_stock(sample_tenant.id, product, 8, StockMovementType.BULK_IMPORT)

        assert movement.quantity == 3

    def test_adjust_stock_commits_and_invalidates(self, db_session, sample_tenant, sample_user,
                                                  make_product, dispatched_invalidations):
        product = make_product(stock=5)

        movement = StockLedgerService(db_session).adjust_stock(sample_tenant.id, product.id, -2,
                                                               "Conteo físico", sample_user.id)

        assert movement.type == StockMovementType.MANUAL_ADJUSTMENT
        assert movement.notes == "Conteo físico"
        assert movement.created_by == sample_user.id
        db_session.refresh(product)
        assert product.stock == 3
        assert dispatched_invalidations[-1] == (str(sample_tenant.id), ["inventario"])

    def test_adjust_stock_cannot_go_negative(self, db_session, sample_tenant, make_product):
        product = make_product(stock=5)

        with pytest.raises(InsufficientStock):
            StockLedgerService(db_session).adjust_stock(sample_tenant.id, product.id, -100, None, None)

        db_session.refresh(product)
        assert product.stock == 5
        assert _ledger_total(db_session, product.id) == 5

    def test_list_movements(self, db_session, sample_tenant, make_product):
        product = make_product(stock=5)
        ledger = StockLedgerService(db_session)
        ledger.adjust_stock(sample_tenant.id, product.id, 1, None, None)

        result = ledger.list_movements(sample_tenant.id, product.id)

        assert result["total"] == 2
        types = {m.type for m in result["movements"]}
        assert types == {StockMovementType.INITIAL_LOAD, StockMovementType.MANUAL_ADJUSTMENT}

    def test_list_movements_other_tenant(self, db_session, other_tenant, make_product):
        product = make_product(stock=5)

        with pytest.raises(InvalidReference):
            StockLedgerService(db_session).list_movements(other_tenant.id, product.id)


class TestStockEndpoints:
    """Tests de la API de stock"""

    def test_adjust_stock(self, client, office_headers, make_product):
        product = make_product(stock=5)

        response = client.post(f"/api/v1/products/{product.id}/adjust-stock", headers=office_headers,
                               json={"quantity": 4, "notes": "Ingreso de mercadería"})

        assert response.status_code == 201
        assert response.json()["type"] == "AJUSTE_MANUAL"
        assert response.json()["quantity"] == 4

        movements = client.get(f"/api/v1/products/{product.id}/movements", headers=office_headers)
        assert movements.status_code == 200
        assert movements.json()["total"] == 2

    def test_adjust_stock_negative_result(self, client, office_headers, make_product):
        product = make_product(stock=1)

        response = client.post(f"/api/v1/products/{product.id}/adjust-stock", headers=office_headers,
                               json={"quantity": -2})

        assert response.status_code == 409
        assert response.json()["code"] == "insufficient_stock"

    def test_adjust_stock_zero_quantity(self, client, office_headers, make_product):
        product = make_product(stock=1)

        response = client.post(f"/api/v1/products/{product.id}/adjust-stock", headers=office_headers,
                               json={"quantity": 0})

        assert response.status_code == 422

    def test_adjust_stock_requires_permission(self, client, seller_headers, make_product):
        product = make_product(stock=1)

        response = client.post(f"/api/v1/products/{product.id}/adjust-stock", headers=seller_headers,
                               json={"quantity": 1})

        assert response.status_code == 403
