"""
Catálogo de permisos y resolución de roles.

Un usuario puede tener un rol heredado (string en users.legacy_role) y/o un
rol dinámico (roles.permissions). Ambos se resuelven una sola vez por request
a un conjunto plano de capacidades; los endpoints sólo consultan ese conjunto.
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Union

ALL_PERMISSIONS = "admin:all"

PERMISSIONS = {
    "INVENTARIO": {
        "label": "Inventario y Productos",
        "actions": [
            ("fil:ver", "Ver Stock"),
            ("inv:crear", "Crear Productos"),
            ("inv:editar", "Editar Productos"),
            ("inv:eliminar", "Eliminar Productos"),
            ("inv:ajustar", "Ajuste de Stock Manual"),
        ],
    },
    "REPORTES": {
        "label": "Reportería",
        "actions": [
            ("rep:ver", "Ver Gráficos y Estadísticas"),
        ],
    },
    "VENTAS": {
        "label": "Punto de Venta",
        "actions": [
            ("vta:acceso", "Acceso al POS"),
            ("vta:cobrar", "Realizar Cobros"),
            ("vta:descuento", "Aplicar Descuentos Manuales"),
            ("vta:anular", "Anular Ventas"),
        ],
    },
    "CAJA": {
        "label": "Gestión de Caja",
        "actions": [
            ("caja:ver", "Ver Movimientos"),
            ("caja:apertura", "Abrir/Cerrar Caja"),
            ("caja:ingreso", "Registrar Ingresos/Egresos"),
        ],
    },
    "CLIENTES": {
        "label": "Clientes",
        "actions": [
            ("cli:ver", "Ver Listado"),
            ("cli:crear", "Crear/Editar Clientes"),
            ("cli:eliminar", "Eliminar Clientes"),
            ("cli:ctacte", "Gestionar Cta. Cte."),
        ],
    },
    "CONTABILIDAD": {
        "label": "Contabilidad",
        "actions": [
            ("cont:ver", "Ver Proyecciones e Impuestos"),
            ("cont:registrar", "Registrar Gastos e Impuestos"),
        ],
    },
    "CONFIGURACION": {
        "label": "Administración",
        "actions": [
            ("cfg:usuarios", "Gestionar Usuarios y Roles"),
            ("cfg:empresa", "Editar Datos de Empresa"),
            ("cfg:sistema", "Configuración Técnica"),
        ],
    },
}

# Capacidades equivalentes a las listas de roles permitidos del esquema heredado
LEGACY_ROLE_PERMISSIONS = {
    "SUPER_ADMIN": frozenset({ALL_PERMISSIONS}),
    "ADMIN": frozenset({ALL_PERMISSIONS}),
    "ADMINISTRATIVO": frozenset({
        "fil:ver", "inv:crear", "inv:editar", "inv:ajustar",
        "vta:acceso", "vta:cobrar",
        "caja:ver", "caja:apertura", "caja:ingreso",
        "cli:ver", "cli:crear", "cli:ctacte",
        "rep:ver", "cont:ver",
    }),
    "VENDEDOR": frozenset({
        "fil:ver",
        "vta:acceso", "vta:cobrar",
        "caja:ver", "caja:apertura", "caja:ingreso",
        "cli:ver",
    }),
}


def all_permission_keys() -> List[str]:
    return [key for group in PERMISSIONS.values() for key, _ in group["actions"]]


def has_permission(user_permissions: Optional[Iterable[str]], required_key: str) -> bool:
    """True si el conjunto incluye la clave o el comodín admin:all"""
    if not user_permissions:
        return False
    permissions = set(user_permissions)
    if ALL_PERMISSIONS in permissions:
        return True
    return required_key in permissions


@dataclass(frozen=True)
class LegacyRole:
    name: str

    def permissions(self) -> FrozenSet[str]:
        return LEGACY_ROLE_PERMISSIONS.get((self.name or "").upper(), frozenset())


@dataclass(frozen=True)
class DynamicRole:
    name: str
    granted: FrozenSet[str]

    def permissions(self) -> FrozenSet[str]:
        return self.granted


ResolvedRole = Union[LegacyRole, DynamicRole]


def roles_for_user(user) -> List[ResolvedRole]:
    """Variantes de rol presentes en un User (heredado y/o dinámico)"""
    roles: List[ResolvedRole] = []
    if user.legacy_role:
        roles.append(LegacyRole(user.legacy_role))
    if user.role is not None:
        granted = user.role.permissions or []
        if not isinstance(granted, (list, tuple, set, frozenset)):
            granted = []
        roles.append(DynamicRole(user.role.name, frozenset(str(p) for p in granted)))
    return roles


def resolve_permissions(roles: Iterable[ResolvedRole]) -> FrozenSet[str]:
    resolved = set()
    for role in roles:
        resolved |= role.permissions()
    return frozenset(resolved)
