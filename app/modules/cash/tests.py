"""
Tests para el módulo de Caja

Cubren:
- Apertura (una sola caja abierta por tenant, también a nivel de índice)
- Cierre con arqueo (esperado, contado, diferencia)
- Movimientos manuales y su anulación por movimiento compensatorio
- Historial y último cierre
- Endpoints y permisos
"""

import pytest
from decimal import Decimal
from uuid import uuid4
from sqlalchemy.exc import IntegrityError

from app.common.exceptions import AlreadyOpen, AlreadyClosed, NotFound, PolicyViolation
from app.modules.cash.models import CashSession, CashSessionStatus, CashMovement, CashMovementType
from app.modules.cash.service import CashSessionService
from app.modules.sales.models import PaymentMethod
from app.modules.sales.schemas import SaleCreate, SaleItemCreate
from app.modules.sales.service import SaleService


# ===== TESTS DE MODELOS =====

class TestCashModels:
    """Tests para CashSession y CashMovement"""

    def test_second_open_session_violates_unique_index(self, db_session, sample_tenant):
        """El índice único parcial impide dos cajas ABIERTA en el mismo tenant"""
        db_session.add(CashSession(tenant_id=sample_tenant.id, status=CashSessionStatus.OPEN, opening_amount=0))
        db_session.commit()

        db_session.add(CashSession(tenant_id=sample_tenant.id, status=CashSessionStatus.OPEN, opening_amount=0))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_closed_sessions_do_not_conflict(self, db_session, sample_tenant):
        db_session.add_all([
            CashSession(tenant_id=sample_tenant.id, status=CashSessionStatus.CLOSED, opening_amount=0),
            CashSession(tenant_id=sample_tenant.id, status=CashSessionStatus.CLOSED, opening_amount=0),
            CashSession(tenant_id=sample_tenant.id, status=CashSessionStatus.OPEN, opening_amount=0),
        ])
        db_session.commit()

        assert db_session.query(CashSession).count() == 3

    def test_running_balance(self, db_session, sample_tenant):
        session = CashSession(tenant_id=sample_tenant.id, status=CashSessionStatus.OPEN,
                              opening_amount=Decimal("100.00"))
        session.movements.append(CashMovement(tenant_id=sample_tenant.id, type=CashMovementType.INCOME,
                                              amount=Decimal("50.00"), concept="Ingreso"))
        session.movements.append(CashMovement(tenant_id=sample_tenant.id, type=CashMovementType.EXPENSE,
                                              amount=Decimal("30.00"), concept="Egreso"))

        assert session.running_balance == Decimal("120.00")


# ===== TESTS DEL SERVICIO =====

class TestCashSessionService:
    """Tests para CashSessionService"""

    def test_open_session(self, db_session, sample_tenant, sample_user):
        session = CashSessionService(db_session).open_session(sample_tenant.id, Decimal("1000.00"), sample_user.id)

        assert session.status == CashSessionStatus.OPEN
        assert Decimal(session.opening_amount) == Decimal("1000.00")
        assert session.opened_by == sample_user.id

    def test_open_twice_raises_already_open(self, db_session, sample_tenant, open_cash_session):
        open_cash_session("100")

        with pytest.raises(AlreadyOpen):
            CashSessionService(db_session).open_session(sample_tenant.id, Decimal("0"))

        assert db_session.query(CashSession).count() == 1

    def test_concurrent_opens_only_one_succeeds(self, db_session, sample_tenant, monkeypatch):
        """Dos aperturas que no ven caja abierta: el índice único deja pasar sólo una"""
        monkeypatch.setattr(CashSessionService, "_find_open_session", lambda self, tenant_id: None)
        outcomes = []

        for amount in ("100", "200"):
            try:
                CashSessionService(db_session).open_session(sample_tenant.id, Decimal(amount))
                outcomes.append("opened")
            except AlreadyOpen:
                outcomes.append("already_open")

        assert outcomes == ["opened", "already_open"]
        open_sessions = db_session.query(CashSession).filter(
            CashSession.tenant_id == sample_tenant.id,
            CashSession.status == CashSessionStatus.OPEN
        ).all()
        assert len(open_sessions) == 1
        assert Decimal(open_sessions[0].opening_amount) == Decimal("100.00")

    def test_negative_opening_rejected(self, db_session, sample_tenant):
        with pytest.raises(PolicyViolation):
            CashSessionService(db_session).open_session(sample_tenant.id, Decimal("-1"))

    def test_sessions_are_per_tenant(self, db_session, sample_tenant, other_tenant, open_cash_session):
        open_cash_session()

        other = CashSessionService(db_session).open_session(other_tenant.id, Decimal("0"))

        assert other.tenant_id == other_tenant.id

    def test_close_reconciliation(self, db_session, sample_tenant, sample_user, open_cash_session):
        """Apertura 1000, ingreso 500, egreso 200, contado 1250: esperado 1300, diferencia -50"""
        service = CashSessionService(db_session)
        session = open_cash_session("1000")
        service.record_movement(sample_tenant.id, session.id, CashMovementType.INCOME,
                                Decimal("500"), "Cambio recibido", user_id=sample_user.id)
        service.record_movement(sample_tenant.id, session.id, CashMovementType.EXPENSE,
                                Decimal("200"), "Pago de flete", user_id=sample_user.id)

        result = service.close_session(sample_tenant.id, session.id, Decimal("1250"), sample_user.id)

        assert result["expected"] == Decimal("1300.00")
        assert result["counted"] == Decimal("1250.00")
        assert result["difference"] == Decimal("-50.00")

        db_session.refresh(session)
        assert session.status == CashSessionStatus.CLOSED
        assert Decimal(session.expected_amount) == Decimal("1300.00")
        assert Decimal(session.closing_amount) == Decimal("1250.00")
        assert Decimal(session.difference) == Decimal("-50.00")
        assert session.closed_at is not None
        assert session.closed_by == sample_user.id

    def test_close_twice_raises_already_closed(self, db_session, sample_tenant, open_cash_session):
        service = CashSessionService(db_session)
        session = open_cash_session()
        service.close_session(sample_tenant.id, session.id, Decimal("0"))

        with pytest.raises(AlreadyClosed):
            service.close_session(sample_tenant.id, session.id, Decimal("0"))

    def test_close_other_tenant_session(self, db_session, other_tenant, open_cash_session):
        session = open_cash_session()

        with pytest.raises(NotFound):
            CashSessionService(db_session).close_session(other_tenant.id, session.id, Decimal("0"))

    def test_reopen_after_close(self, db_session, sample_tenant, open_cash_session):
        service = CashSessionService(db_session)
        first = open_cash_session()
        service.close_session(sample_tenant.id, first.id, Decimal("0"))

        second = service.open_session(sample_tenant.id, Decimal("0"))

        assert second.id != first.id
        assert service.get_current_session(sample_tenant.id).id == second.id

    def test_get_current_session(self, db_session, sample_tenant, open_cash_session):
        service = CashSessionService(db_session)
        assert service.get_current_session(sample_tenant.id) is None

        session = open_cash_session("50")
        service.record_movement(sample_tenant.id, session.id, CashMovementType.INCOME, Decimal("25"), "Ingreso")

        current = service.get_current_session(sample_tenant.id)
        assert current.id == session.id
        assert len(current.movements) == 1
        assert current.running_balance == Decimal("75.00")

    def test_record_movement_requires_concept(self, db_session, sample_tenant, open_cash_session):
        session = open_cash_session()

        with pytest.raises(PolicyViolation):
            CashSessionService(db_session).record_movement(
                sample_tenant.id, session.id, CashMovementType.INCOME, Decimal("10"), "   "
            )

    def test_record_movement_requires_positive_amount(self, db_session, sample_tenant, open_cash_session):
        session = open_cash_session()

        with pytest.raises(PolicyViolation):
            CashSessionService(db_session).record_movement(
                sample_tenant.id, session.id, CashMovementType.EXPENSE, Decimal("0"), "Nada"
            )

    def test_record_movement_on_closed_session(self, db_session, sample_tenant, open_cash_session):
        service = CashSessionService(db_session)
        session = open_cash_session()
        service.close_session(sample_tenant.id, session.id, Decimal("0"))

        with pytest.raises(NotFound):
            service.record_movement(sample_tenant.id, session.id, CashMovementType.INCOME, Decimal("10"), "Tarde")

    def test_reverse_manual_movement(self, db_session, sample_tenant, sample_user, open_cash_session):
        """Anular un ingreso crea un egreso compensatorio; el original se conserva"""
        service = CashSessionService(db_session)
        session = open_cash_session("100")
        movement = service.record_movement(sample_tenant.id, session.id, CashMovementType.INCOME,
                                           Decimal("40"), "Ingreso por error")

        reversal = service.delete_movement(sample_tenant.id, movement.id, sample_user.id)

        assert reversal.type == CashMovementType.EXPENSE
        assert Decimal(reversal.amount) == Decimal("40.00")
        assert reversal.reversal_of_id == movement.id
        assert reversal.concept == "Anulación: Ingreso por error"
        assert db_session.query(CashMovement).count() == 2
        assert service.compute_expected(session) == Decimal("100.00")

    def test_reverse_twice_rejected(self, db_session, sample_tenant, open_cash_session):
        service = CashSessionService(db_session)
        session = open_cash_session()
        movement = service.record_movement(sample_tenant.id, session.id, CashMovementType.EXPENSE,
                                           Decimal("15"), "Café")
        reversal = service.delete_movement(sample_tenant.id, movement.id)

        with pytest.raises(PolicyViolation):
            service.delete_movement(sample_tenant.id, movement.id)
        with pytest.raises(PolicyViolation):
            service.delete_movement(sample_tenant.id, reversal.id)

    def test_sale_linked_movement_cannot_be_reversed(self, db_session, sample_tenant, admin_context,
                                                     make_product, open_cash_session):
        product = make_product(stock=5)
        open_cash_session()
        SaleService(db_session).register_sale(admin_context, SaleCreate(
            items=[SaleItemCreate(product_id=product.id, quantity=1)],
            payment_method=PaymentMethod.CASH
        ))
        sale_movement = db_session.query(CashMovement).one()

        with pytest.raises(PolicyViolation):
            CashSessionService(db_session).delete_movement(sample_tenant.id, sale_movement.id)

    def test_movement_of_closed_session_cannot_be_reversed(self, db_session, sample_tenant, open_cash_session):
        service = CashSessionService(db_session)
        session = open_cash_session()
        movement = service.record_movement(sample_tenant.id, session.id, CashMovementType.INCOME,
                                           Decimal("10"), "Ingreso")
        service.close_session(sample_tenant.id, session.id, Decimal("10"))

        with pytest.raises(PolicyViolation):
            service.delete_movement(sample_tenant.id, movement.id)

    def test_reverse_other_tenant_movement(self, db_session, sample_tenant, other_tenant, open_cash_session):
        service = CashSessionService(db_session)
        session = open_cash_session()
        movement = service.record_movement(sample_tenant.id, session.id, CashMovementType.INCOME,
                                           Decimal("10"), "Ingreso")

        with pytest.raises(NotFound):
            service.delete_movement(other_tenant.id, movement.id)
        with pytest.raises(NotFound):
            service.delete_movement(sample_tenant.id, uuid4())

    def test_sale_income_returns_none_for_zero_total(self, db_session, sample_tenant, open_cash_session):
        open_cash_session()

        assert CashSessionService(db_session).add_sale_income(sample_tenant.id, uuid4(), Decimal("0")) is None

    def test_history_and_last_closing(self, db_session, sample_tenant, open_cash_session):
        service = CashSessionService(db_session)
        assert service.get_last_closing_amount(sample_tenant.id) == Decimal("0")

        first = open_cash_session("10")
        service.close_session(sample_tenant.id, first.id, Decimal("10"))
        second = open_cash_session("10")
        service.close_session(sample_tenant.id, second.id, Decimal("35.50"))
        open_cash_session("35.50")

        history = service.list_closed_sessions(sample_tenant.id)
        assert len(history) == 2
        assert all(s.status == CashSessionStatus.CLOSED for s in history)
        assert service.get_last_closing_amount(sample_tenant.id) == Decimal("35.50")


# ===== TESTS DE ENDPOINTS =====

class TestCashEndpoints:
    """Tests de la API de caja"""

    def test_open_and_current(self, client, seller_headers):
        response = client.post("/api/v1/cash-sessions/open", headers=seller_headers,
                               json={"opening_amount": "1000.00"})
        assert response.status_code == 201
        assert response.json()["status"] == "ABIERTA"

        current = client.get("/api/v1/cash-sessions/current", headers=seller_headers)
        assert current.status_code == 200
        body = current.json()["session"]
        assert body["id"] == response.json()["id"]
        assert Decimal(str(body["running_balance"])) == Decimal("1000.00")

    def test_current_without_session(self, client, seller_headers):
        response = client.get("/api/v1/cash-sessions/current", headers=seller_headers)

        assert response.status_code == 200
        assert response.json() == {"session": None}

    def test_open_twice_returns_conflict(self, client, seller_headers):
        client.post("/api/v1/cash-sessions/open", headers=seller_headers, json={"opening_amount": "0"})
        response = client.post("/api/v1/cash-sessions/open", headers=seller_headers, json={"opening_amount": "0"})

        assert response.status_code == 409
        assert response.json()["code"] == "already_open"

    def test_full_session_flow(self, client, seller_headers):
        session_id = client.post("/api/v1/cash-sessions/open", headers=seller_headers,
                                 json={"opening_amount": "1000"}).json()["id"]
        client.post(f"/api/v1/cash-sessions/{session_id}/movements", headers=seller_headers,
                    json={"type": "INGRESO", "amount": "500", "concept": "Cambio"})
        client.post(f"/api/v1/cash-sessions/{session_id}/movements", headers=seller_headers,
                    json={"type": "EGRESO", "amount": "200", "concept": "Flete"})

        response = client.post(f"/api/v1/cash-sessions/{session_id}/close", headers=seller_headers,
                               json={"counted_cash": "1250"})

        assert response.status_code == 200
        body = response.json()
        assert Decimal(str(body["expected"])) == Decimal("1300")
        assert Decimal(str(body["counted"])) == Decimal("1250")
        assert Decimal(str(body["difference"])) == Decimal("-50")

        again = client.post(f"/api/v1/cash-sessions/{session_id}/close", headers=seller_headers,
                            json={"counted_cash": "1250"})
        assert again.status_code == 409
        assert again.json()["code"] == "already_closed"

        history = client.get("/api/v1/cash-sessions/history", headers=seller_headers)
        assert len(history.json()) == 1
        last = client.get("/api/v1/cash-sessions/last-closing", headers=seller_headers)
        assert Decimal(str(last.json()["amount"])) == Decimal("1250")

    def test_blank_concept_rejected(self, client, seller_headers):
        session_id = client.post("/api/v1/cash-sessions/open", headers=seller_headers,
                                 json={"opening_amount": "0"}).json()["id"]

        response = client.post(f"/api/v1/cash-sessions/{session_id}/movements", headers=seller_headers,
                               json={"type": "INGRESO", "amount": "10", "concept": "   "})

        assert response.status_code == 422

    def test_delete_movement_creates_reversal(self, client, seller_headers):
        session_id = client.post("/api/v1/cash-sessions/open", headers=seller_headers,
                                 json={"opening_amount": "0"}).json()["id"]
        movement = client.post(f"/api/v1/cash-sessions/{session_id}/movements", headers=seller_headers,
                               json={"type": "EGRESO", "amount": "30", "concept": "Viáticos"}).json()

        response = client.delete(f"/api/v1/cash-movements/{movement['id']}", headers=seller_headers)

        assert response.status_code == 200
        assert response.json()["type"] == "INGRESO"
        assert response.json()["reversal_of_id"] == movement["id"]

        again = client.delete(f"/api/v1/cash-movements/{movement['id']}", headers=seller_headers)
        assert again.status_code == 422

    def test_manual_movement_ignores_client_reference(self, client, seller_headers):
        """Un movimiento manual no puede hacerse pasar por uno de venta"""
        session_id = client.post("/api/v1/cash-sessions/open", headers=seller_headers,
                                 json={"opening_amount": "0"}).json()["id"]
        movement = client.post(f"/api/v1/cash-sessions/{session_id}/movements", headers=seller_headers,
                               json={"type": "INGRESO", "amount": "15", "concept": "Cambio",
                                     "reference": str(uuid4())})
        assert movement.status_code == 201
        assert movement.json()["reference"] is None

        response = client.delete(f"/api/v1/cash-movements/{movement.json()['id']}", headers=seller_headers)

        assert response.status_code == 200
        assert response.json()["type"] == "EGRESO"

    def test_close_other_tenant_session(self, client, seller_headers, other_headers):
        session_id = client.post("/api/v1/cash-sessions/open", headers=seller_headers,
                                 json={"opening_amount": "0"}).json()["id"]

        response = client.post(f"/api/v1/cash-sessions/{session_id}/close", headers=other_headers,
                               json={"counted_cash": "0"})

        assert response.status_code == 404

    def test_requires_authentication(self, client):
        response = client.get("/api/v1/cash-sessions/current")

        assert response.status_code in (401, 403)
