"""
Tests para el módulo de Productos

Cubren:
- Alta con stock inicial registrado como INVENTARIO_INICIAL
- Edición de stock registrada como AJUSTE_MANUAL
- SKU único por tenant, referencias del mismo tenant
- Baja lógica, búsqueda, filtro de stock bajo y paginación
- Carga masiva por lotes (upsert por SKU, referencias, errores por fila)
"""

import pytest
from pydantic import ValidationError
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import ConflictError, InvalidReference, NotFound
from app.modules.products.importer import BulkImportService, _to_decimal, _to_int
from app.modules.products.models import (
    Product, Brand, VehicleModel, Provider, Category, ProductCompatibility,
    StockMovement, StockMovementType
)
from app.modules.products.schemas import (
    ProductCreate, ProductUpdate, CompatibilityCreate, BulkImportRow
)
from app.modules.products.service import ProductService


def _movements(db, product_id, movement_type=None):
    query = db.query(StockMovement).filter(StockMovement.product_id == product_id)
    if movement_type:
        query = query.filter(StockMovement.type == movement_type)
    return query.all()


# ===== TESTS DEL SERVICIO =====

class TestProductService:
    """Tests para ProductService"""

    def test_create_product_records_initial_stock(self, db_session, sample_tenant, make_product):
        product = make_product(sale_price="250.00", stock=7)

        assert product.stock == 7
        movements = _movements(db_session, product.id)
        assert len(movements) == 1
        assert movements[0].type == StockMovementType.INITIAL_LOAD
        assert movements[0].quantity == 7

    def test_create_product_without_stock(self, db_session, make_product):
        product = make_product(stock=0)

        assert product.stock == 0
        assert _movements(db_session, product.id) == []

    def test_create_product_defaults(self, db_session, sample_tenant):
        product = ProductService(db_session).create_product(
            sample_tenant.id, ProductCreate(sku="  FIL-001 ", name="Filtro de aceite")
        )

        assert product.sku == "FIL-001"
        assert Decimal(product.tax_rate) == Decimal("21")
        assert product.min_stock == 5

    def test_duplicate_sku_rejected(self, db_session, make_product):
        make_product(sku="DUP-1")

        with pytest.raises(ConflictError):
            make_product(sku="DUP-1")

    def test_same_sku_in_other_tenant(self, db_session, other_tenant, make_product):
        make_product(sku="SHARED-1")

        product = ProductService(db_session).create_product(
            other_tenant.id, ProductCreate(sku="SHARED-1", name="Otro")
        )

        assert product.tenant_id == other_tenant.id

    def test_reference_from_other_tenant_rejected(self, db_session, other_tenant, make_product):
        category = Category(tenant_id=other_tenant.id, name="Ajena")
        db_session.add(category)
        db_session.commit()

        with pytest.raises(InvalidReference):
            make_product(category_id=category.id)
        assert db_session.query(Product).count() == 0

    def test_create_with_compatibilities(self, db_session, sample_tenant, make_product):
        brand = Brand(tenant_id=sample_tenant.id, name="Ford")
        db_session.add(brand)
        db_session.flush()
        model = VehicleModel(tenant_id=sample_tenant.id, name="Focus", brand_id=brand.id)
        db_session.add(model)
        db_session.commit()

        product = make_product(compatibilities=[
            CompatibilityCreate(brand_id=brand.id, model_id=model.id, year_from=2012, year_to=2018)
        ])

        assert len(product.compatibilities) == 1
        assert product.compatibilities[0].year_from == 2012

    def test_update_stock_records_manual_adjustment(self, db_session, sample_tenant, sample_user, make_product):
        product = make_product(stock=7)

        updated = ProductService(db_session).update_product(
            sample_tenant.id, product.id, ProductUpdate(stock=4, name="Nuevo nombre"), sample_user.id
        )

        assert updated.stock == 4
        assert updated.name == "Nuevo nombre"
        adjustments = _movements(db_session, product.id, StockMovementType.MANUAL_ADJUSTMENT)
        assert len(adjustments) == 1
        assert adjustments[0].quantity == -3

    def test_update_without_stock_change(self, db_session, sample_tenant, make_product):
        product = make_product(stock=7)

        ProductService(db_session).update_product(
            sample_tenant.id, product.id, ProductUpdate(stock=7, sale_price=Decimal("99.90"))
        )

        assert _movements(db_session, product.id, StockMovementType.MANUAL_ADJUSTMENT) == []

    def test_update_to_existing_sku(self, db_session, sample_tenant, make_product):
        make_product(sku="A-1")
        product = make_product(sku="B-1")

        with pytest.raises(ConflictError):
            ProductService(db_session).update_product(sample_tenant.id, product.id, ProductUpdate(sku="A-1"))

    def test_update_rejects_null_required_fields(self):
        for field in ("sku", "name", "sale_price", "tax_rate", "stock"):
            with pytest.raises(ValidationError):
                ProductUpdate(**{field: None})

    def test_non_sku_integrity_error_is_not_reported_as_duplicate(self, db_session, sample_tenant, make_product):
        """Sólo la restricción única de SKU se informa como SKU duplicado"""
        product = make_product()

        with pytest.raises(ConflictError) as exc_info:
            ProductService(db_session).update_product(
                sample_tenant.id, product.id, ProductUpdate.model_construct(name=None)
            )

        assert "SKU" not in exc_info.value.message
        db_session.refresh(product)
        assert product.name == "Producto 1"

    def test_soft_delete(self, db_session, sample_tenant, make_product):
        product = make_product()
        service = ProductService(db_session)

        service.delete_product(sample_tenant.id, product.id)

        with pytest.raises(NotFound):
            service.get_product(sample_tenant.id, product.id)
        assert service.list_products(sample_tenant.id)["total"] == 0
        assert db_session.query(Product).filter(Product.id == product.id).first().deleted_at is not None

    def test_list_products_filters(self, db_session, sample_tenant, make_product):
        make_product(name="Filtro de aire", sku="FA-1", stock=20)
        make_product(name="Filtro de aceite", sku="FO-1", stock=2)
        make_product(name="Bujía", sku="BU-1", stock=30)
        service = ProductService(db_session)

        assert service.list_products(sample_tenant.id, search="filtro")["total"] == 2
        assert service.list_products(sample_tenant.id, search="BU-1")["total"] == 1

        low = service.list_products(sample_tenant.id, low_stock=True)
        assert [p.sku for p in low["data"]] == ["FO-1"]
        assert low["data"][0].is_low_stock is True

        page = service.list_products(sample_tenant.id, page=1, limit=2)
        assert len(page["data"]) == 2
        assert page["hasNext"] is True
        assert page["hasPrev"] is False

    def test_get_product_other_tenant(self, db_session, other_tenant, make_product):
        product = make_product()

        with pytest.raises(NotFound):
            ProductService(db_session).get_product(other_tenant.id, product.id)


# ===== TESTS DE CARGA MASIVA =====

class TestBulkImport:
    """Tests para BulkImportService"""

    def test_cell_parsing(self):
        assert _to_decimal("150,5") == Decimal("150.50")
        assert _to_decimal("") == Decimal("0.00")
        assert _to_decimal("abc") == Decimal("0.00")
        assert _to_int("12.0") == 12
        assert _to_int(None, 5) == 5
        assert _to_int("x", None) is None

    def test_import_creates_products_and_references(self, db_session, sample_tenant, sample_user):
        rows = [
            BulkImportRow(sku="FO-100", name="Filtro de aceite", brand="Ford", model="Focus",
                          provider="Distribuidora Norte", category="Filtros",
                          purchase_price="1000", sale_price="1500,50", stock=10, year=2015),
            BulkImportRow(sku="FA-100", name="Filtro de aire", brand="Ford", model="Focus",
                          provider="Distribuidora Norte", category="Filtros", stock="4", min_stock=2),
            BulkImportRow(sku=None, name="Sin SKU", stock=3),
            BulkImportRow(sku="SIN-NOMBRE", name="  ", stock=3),
        ]

        result = BulkImportService(db_session).import_rows(sample_tenant.id, rows, sample_user.id)

        assert result.created == 2
        assert result.updated == 0
        assert result.errors == 0
        assert db_session.query(Brand).count() == 1
        assert db_session.query(VehicleModel).count() == 1
        assert db_session.query(Provider).count() == 1
        assert db_session.query(Category).count() == 1

        oil = db_session.query(Product).filter(Product.sku == "FO-100").one()
        assert oil.stock == 10
        assert oil.min_stock == 5
        assert Decimal(oil.sale_price) == Decimal("1500.50")
        assert Decimal(oil.tax_rate) == Decimal("21")
        assert oil.category.name == "Filtros"

        movements = _movements(db_session, oil.id)
        assert len(movements) == 1
        assert movements[0].type == StockMovementType.BULK_IMPORT
        assert movements[0].quantity == 10

        compat = db_session.query(ProductCompatibility).filter(ProductCompatibility.product_id == oil.id).one()
        assert compat.year_from == 2015
        assert compat.year_to == 2015

        air = db_session.query(Product).filter(Product.sku == "FA-100").one()
        assert air.min_stock == 2

    def test_reimport_updates_and_records_difference(self, db_session, sample_tenant):
        service = BulkImportService(db_session)
        service.import_rows(sample_tenant.id, [BulkImportRow(sku="X-1", name="Producto", stock=10)])

        result = service.import_rows(sample_tenant.id, [
            BulkImportRow(sku="X-1", name="Producto renombrado", stock=6, sale_price="20")
        ])

        assert result.created == 0
        assert result.updated == 1
        product = db_session.query(Product).filter(Product.sku == "X-1").one()
        assert product.name == "Producto renombrado"
        assert product.stock == 6
        quantities = sorted(m.quantity for m in _movements(db_session, product.id, StockMovementType.BULK_IMPORT))
        assert quantities == [-4, 10]
        assert db_session.query(Product).count() == 1

    def test_existing_references_reused(self, db_session, sample_tenant):
        db_session.add(Brand(tenant_id=sample_tenant.id, name="Fiat"))
        db_session.commit()

        BulkImportService(db_session).import_rows(sample_tenant.id, [
            BulkImportRow(sku="P-1", name="Pastillas", brand="Fiat", model="Palio")
        ])

        assert db_session.query(Brand).count() == 1

    def test_row_error_does_not_stop_import(self, db_session, sample_tenant):
        """Una fila con stock negativo falla sola; el resto se importa"""
        rows = [
            BulkImportRow(sku="OK-1", name="Correcto", stock=1),
            BulkImportRow(sku="BAD-1", name="Stock negativo", stock=-5),
            BulkImportRow(sku="OK-2", name="Correcto 2", stock=2),
        ]

        result = BulkImportService(db_session).import_rows(sample_tenant.id, rows)

        assert result.created == 2
        assert result.errors == 1
        assert result.details[0].startswith("Error en SKU BAD-1")
        assert db_session.query(Product).filter(Product.sku == "BAD-1").first() is None

    def test_chunks(self, db_session, sample_tenant):
        rows = [BulkImportRow(sku=f"CH-{i}", name=f"Producto {i}", stock=i + 1) for i in range(5)]

        result = BulkImportService(db_session, chunk_size=2).import_rows(sample_tenant.id, rows)

        assert result.created == 5
        assert db_session.query(StockMovement).filter(
            StockMovement.type == StockMovementType.BULK_IMPORT
        ).count() == 5

    def test_import_restores_deleted_product(self, db_session, sample_tenant, make_product):
        product = make_product(sku="DEL-1", stock=3)
        ProductService(db_session).delete_product(sample_tenant.id, product.id)

        result = BulkImportService(db_session).import_rows(sample_tenant.id, [
            BulkImportRow(sku="DEL-1", name="Vuelve", stock=3)
        ])

        assert result.updated == 1
        restored = ProductService(db_session).get_product(sample_tenant.id, product.id)
        assert restored.name == "Vuelve"

    def test_invalidates_inventory(self, db_session, sample_tenant, dispatched_invalidations):
        BulkImportService(db_session).import_rows(sample_tenant.id, [BulkImportRow(sku="I-1", name="Uno")])

        assert dispatched_invalidations[-1] == (str(sample_tenant.id), ["inventario"])


# ===== TESTS DE ENDPOINTS =====

class TestProductEndpoints:
    """Tests de la API de productos"""

    def test_create_and_get(self, client, office_headers):
        response = client.post("/api/v1/products/", headers=office_headers, json={
            "sku": "API-1",
            "name": "Amortiguador delantero",
            "sale_price": "15000.00",
            "stock": 3
        })

        assert response.status_code == 201
        body = response.json()
        assert body["stock"] == 3
        assert body["is_low_stock"] is True

        fetched = client.get(f"/api/v1/products/{body['id']}", headers=office_headers)
        assert fetched.status_code == 200
        assert fetched.json()["sku"] == "API-1"

    def test_duplicate_sku_conflict(self, client, office_headers):
        payload = {"sku": "API-2", "name": "Bomba de agua"}
        client.post("/api/v1/products/", headers=office_headers, json=payload)

        response = client.post("/api/v1/products/", headers=office_headers, json=payload)

        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    def test_list_products(self, client, seller_headers, make_product):
        make_product(name="Radiador", stock=1)
        make_product(name="Embrague", stock=50)

        response = client.get("/api/v1/products/", headers=seller_headers, params={"low_stock": True})

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["data"][0]["name"] == "Radiador"

    def test_patch_product(self, client, office_headers, make_product):
        product = make_product(stock=5)

        response = client.patch(f"/api/v1/products/{product.id}", headers=office_headers, json={"stock": 9})

        assert response.status_code == 200
        assert response.json()["stock"] == 9

    def test_patch_null_name_rejected(self, client, office_headers, make_product):
        product = make_product()

        response = client.patch(f"/api/v1/products/{product.id}", headers=office_headers, json={"name": None})

        assert response.status_code == 422

    def test_patch_nullable_field_to_null(self, client, office_headers, make_product):
        product = make_product(description="Filtro de aceite")

        response = client.patch(f"/api/v1/products/{product.id}", headers=office_headers,
                                json={"description": None})

        assert response.status_code == 200
        assert response.json()["description"] is None

    def test_delete_requires_permission(self, client, office_headers, admin_headers, make_product):
        product = make_product()

        forbidden = client.delete(f"/api/v1/products/{product.id}", headers=office_headers)
        allowed = client.delete(f"/api/v1/products/{product.id}", headers=admin_headers)

        assert forbidden.status_code == 403
        assert allowed.status_code == 200
        assert client.get(f"/api/v1/products/{product.id}", headers=admin_headers).status_code == 404

    def test_bulk_import_endpoint(self, client, office_headers):
        response = client.post("/api/v1/products/bulk-import", headers=office_headers, json={
            "rows": [
                {"sku": "BK-1", "name": "Bujía", "brand": "Renault", "model": "Clio", "stock": 12},
                {"sku": "BK-2", "name": "Cable de bujía", "stock": "3", "sale_price": 450.5},
                {"name": "Sin SKU"}
            ]
        })

        assert response.status_code == 200
        assert response.json()["created"] == 2
        assert response.json()["errors"] == 0

    def test_bulk_import_empty(self, client, office_headers):
        response = client.post("/api/v1/products/bulk-import", headers=office_headers, json={"rows": []})

        assert response.status_code == 422

    def test_create_with_unknown_category(self, client, office_headers):
        response = client.post("/api/v1/products/", headers=office_headers, json={
            "sku": "API-3", "name": "Disco de freno", "category_id": str(uuid4())
        })

        assert response.status_code == 404
        assert response.json()["code"] == "invalid_reference"
