"""
Tests para la infraestructura compartida: errores de dominio, versiones de
vistas en Redis, encolado de invalidaciones y middleware de request id.
"""

import logging

import pytest

from app.common import cache
from app.common import tasks as common_tasks
from app.common.exceptions import InsufficientStock, NotFound, NoOpenCashSession, PolicyViolation
from app.common.middleware import REQUEST_ID_HEADER, RequestIdFilter


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key))

    def execute(self):
        results = []
        for op, key in self.ops:
            if op == "incr":
                self.store[key] = self.store.get(key, 0) + 1
                results.append(self.store[key])
            else:
                results.append(True)
        return results


class FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self):
        return FakePipeline(self.store)

    def get(self, key):
        value = self.store.get(key)
        return str(value) if value is not None else None


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(cache, "_client", client)
    return client


class TestDomainErrors:

    def test_to_dict(self):
        assert InsufficientStock("Stock insuficiente para Filtro").to_dict() == {
            "detail": "Stock insuficiente para Filtro", "code": "insufficient_stock"
        }

    def test_default_message(self):
        error = NoOpenCashSession()
        assert error.status_code == 409
        assert error.message == "Debe abrir la caja para registrar ventas en efectivo."

    def test_hierarchy(self):
        assert NotFound().status_code == 404
        assert isinstance(NoOpenCashSession(), PolicyViolation)


class TestViewVersions:

    def test_bump_and_read(self, fake_redis):
        assert cache.get_view_version("t1", "ventas") == 0

        assert cache.bump_view_versions("t1", ["ventas", "caja"]) == [1, 1]
        assert cache.bump_view_versions("t1", ["ventas"]) == [2]

        assert cache.get_view_version("t1", "ventas") == 2
        assert cache.get_view_version("t2", "ventas") == 0

    def test_invalidate_views_task(self, fake_redis):
        result = common_tasks.invalidate_views("t1", ["inventario", "dashboard"])

        assert result["status"] == "success"
        assert result["versions"] == {"inventario": 1, "dashboard": 1}

    def test_schedule_enqueues(self, dispatched_invalidations):
        cache.schedule_view_invalidation("t1", ("ventas",))

        assert dispatched_invalidations == [("t1", ["ventas"])]

    def test_schedule_survives_broker_failure(self, monkeypatch):
        def broken(tenant_id, views):
            raise ConnectionError("broker caído")

        monkeypatch.setattr(common_tasks.invalidate_views, "delay", broken)

        cache.schedule_view_invalidation("t1", ["ventas"])


class TestRequestContext:

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={REQUEST_ID_HEADER: "abc-123"})

        assert response.status_code == 200
        assert response.headers[REQUEST_ID_HEADER] == "abc-123"

    def test_request_id_generated(self, client):
        response = client.get("/health")

        assert len(response.headers[REQUEST_ID_HEADER]) == 32

    def test_log_filter_default(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

        assert RequestIdFilter().filter(record) is True
        assert record.request_id == "-"
