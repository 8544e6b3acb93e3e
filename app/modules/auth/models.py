from sqlalchemy import Column, String, Boolean, ForeignKey, DateTime, Text, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.database.database import Base
from app.common.mixins import TenantMixin, TimestampMixin


class Tenant(Base, TimestampMixin):
    """Comercio aislado; todas las tablas de negocio se particionan por su id."""
    __tablename__ = "tenants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Role(Base, TenantMixin, TimestampMixin):
    """
    Rol dinámico definido por el comercio.

    `permissions` es una lista JSON de claves de capacidad (ej. "vta:cobrar").
    """
    __tablename__ = "roles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    permissions = Column(JSON, nullable=False, default=list)
    is_system = Column(Boolean, default=False, nullable=False)

    users = relationship("User", back_populates="role")

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_role_tenant_name"),
    )


class User(Base, TenantMixin, TimestampMixin):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, unique=True, nullable=False)
    name = Column(String(200), nullable=True)
    password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    # Rol heredado (string): SUPER_ADMIN, ADMIN, ADMINISTRATIVO, VENDEDOR
    legacy_role = Column(String(50), nullable=False, default="VENDEDOR")
    # Rol dinámico opcional; sus permisos se combinan con los del rol heredado
    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.id"), nullable=True)

    role = relationship("Role", back_populates="users")
