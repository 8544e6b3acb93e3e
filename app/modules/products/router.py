from fastapi import APIRouter, status, Depends, Query
from uuid import UUID
from typing import Optional
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.products.service import ProductService
from app.modules.products.importer import BulkImportService
from app.modules.products.schemas import (
    ProductCreate,
    ProductUpdate,
    ProductOut,
    ProductListResponse,
    BulkImportRequest,
    BulkImportResult
)

product_router = APIRouter(prefix="/products", tags=["Products"])


@product_router.post("/", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    data: ProductCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("inv:crear"))
):
    """Crear producto. El stock inicial queda registrado como INVENTARIO_INICIAL."""
    return ProductService(db).create_product(auth_context.tenant_id, data, auth_context.user_id)


@product_router.get("/", response_model=ProductListResponse)
def list_products(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("fil:ver")),
    page: int = Query(1, ge=1, description="Número de página"),
    limit: int = Query(20, ge=1, le=100, description="Elementos por página"),
    search: Optional[str] = Query(None, description="Buscar por nombre, SKU, código de fábrica o descripción"),
    category_id: Optional[UUID] = Query(None, description="Filtrar por categoría"),
    low_stock: Optional[bool] = Query(None, description="Sólo productos en o bajo el stock mínimo")
):
    """Lista productos con filtros y paginación."""
    return ProductService(db).list_products(
        auth_context.tenant_id, page=page, limit=limit, search=search,
        category_id=category_id, low_stock=low_stock
    )


@product_router.post("/bulk-import", response_model=BulkImportResult)
def bulk_import_products(
    payload: BulkImportRequest,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("inv:crear"))
):
    """
    Carga masiva por lotes. Devuelve cantidades creadas/actualizadas y el
    detalle de las filas con error; los lotes anteriores a un fallo quedan
    confirmados.
    """
    return BulkImportService(db).import_rows(auth_context.tenant_id, payload.rows, auth_context.user_id)


@product_router.get("/{product_id}", response_model=ProductOut)
def get_product(
    product_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("fil:ver"))
):
    return ProductService(db).get_product(auth_context.tenant_id, product_id)


@product_router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: UUID,
    data: ProductUpdate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("inv:editar"))
):
    """Actualizar producto. Un stock distinto al actual genera un AJUSTE_MANUAL."""
    return ProductService(db).update_product(auth_context.tenant_id, product_id, data, auth_context.user_id)


@product_router.delete("/{product_id}")
def delete_product(
    product_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("inv:eliminar"))
):
    """Baja lógica del producto."""
    return ProductService(db).delete_product(auth_context.tenant_id, product_id)
