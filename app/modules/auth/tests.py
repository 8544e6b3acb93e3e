"""
Tests para autenticación y resolución de permisos

Cubren:
- has_permission con el comodín admin:all
- Roles heredados, rol dinámico y su combinación
- Login, /me y validación del token (usuario inactivo, tenant cruzado)
"""


from app.modules.auth.models import Role, User
from app.modules.auth.permissions import (
    ALL_PERMISSIONS, LEGACY_ROLE_PERMISSIONS, DynamicRole, LegacyRole,
    all_permission_keys, has_permission, resolve_permissions, roles_for_user
)
from app.modules.auth.utils import create_access_token, decode_token, hash_password, verify_password


# ===== TESTS DE PERMISOS =====

class TestPermissions:
    """Tests para el catálogo y la resolución de permisos"""

    def test_has_permission(self):
        assert has_permission(["vta:cobrar"], "vta:cobrar") is True
        assert has_permission(["vta:acceso"], "vta:cobrar") is False
        assert has_permission([ALL_PERMISSIONS], "cfg:sistema") is True
        assert has_permission([], "vta:cobrar") is False
        assert has_permission(None, "vta:cobrar") is False

    def test_sale_roles_can_charge(self):
        for role in ("SUPER_ADMIN", "ADMIN", "ADMINISTRATIVO", "VENDEDOR"):
            assert has_permission(LegacyRole(role).permissions(), "vta:cobrar"), role

    def test_unknown_legacy_role_has_no_permissions(self):
        assert LegacyRole("CONSULTA").permissions() == frozenset()

    def test_legacy_role_is_case_insensitive(self):
        assert LegacyRole("vendedor").permissions() == LEGACY_ROLE_PERMISSIONS["VENDEDOR"]

    def test_resolve_merges_roles(self):
        resolved = resolve_permissions([
            LegacyRole("VENDEDOR"),
            DynamicRole("Contador", frozenset({"cont:ver", "cont:registrar"})),
        ])

        assert "vta:cobrar" in resolved
        assert "cont:registrar" in resolved
        assert "inv:eliminar" not in resolved

    def test_legacy_permissions_belong_to_catalogue(self):
        catalogue = set(all_permission_keys())
        for role, permissions in LEGACY_ROLE_PERMISSIONS.items():
            assert permissions - {ALL_PERMISSIONS} <= catalogue, role

    def test_roles_for_user_with_dynamic_role(self, db_session, sample_tenant):
        role = Role(tenant_id=sample_tenant.id, name="Cajero", permissions=["caja:ver", "caja:apertura"])
        db_session.add(role)
        db_session.flush()
        user = User(tenant_id=sample_tenant.id, email="cajero@repuestos.com.ar", password="x",
                    legacy_role="VENDEDOR", role_id=role.id)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)

        roles = roles_for_user(user)

        assert LegacyRole("VENDEDOR") in roles
        assert DynamicRole("Cajero", frozenset({"caja:ver", "caja:apertura"})) in roles

    def test_dynamic_role_with_invalid_permissions_ignored(self, db_session, sample_tenant):
        role = Role(tenant_id=sample_tenant.id, name="Roto", permissions={"no": "lista"})
        db_session.add(role)
        db_session.flush()
        user = User(tenant_id=sample_tenant.id, email="roto@repuestos.com.ar", password="x",
                    legacy_role="", role_id=role.id)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)

        assert resolve_permissions(roles_for_user(user)) == frozenset()


# ===== TESTS DE TOKENS =====

class TestTokens:

    def test_token_round_trip(self):
        token = create_access_token({"sub": "user-1", "tenant_id": "tenant-1"})
        payload = decode_token(token)

        assert payload["sub"] == "user-1"
        assert payload["tenant_id"] == "tenant-1"
        assert payload["type"] == "access"

    def test_verify_password(self):
        hashed = hash_password("Secreta!2025")

        assert verify_password("Secreta!2025", hashed) is True
        assert verify_password("otra", hashed) is False
        assert verify_password("Secreta!2025", "") is False
        assert verify_password("Secreta!2025", "not-a-real-hash") is False


# ===== TESTS DE ENDPOINTS =====

class TestAuthEndpoints:
    """Tests de /auth/login y /auth/me"""

    def test_login_and_me(self, client, db_session, sample_tenant):
        user = User(tenant_id=sample_tenant.id, email="login@repuestos.com.ar",
                    password=hash_password("Secreta!2025"), legacy_role="VENDEDOR", is_active=True)
        db_session.add(user)
        db_session.commit()

        response = client.post("/api/v1/auth/login", json={
            "email": "login@repuestos.com.ar", "password": "Secreta!2025"
        })
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        body = me.json()
        assert body["tenant_id"] == str(sample_tenant.id)
        assert body["user_role"] == "VENDEDOR"
        assert "vta:cobrar" in body["permissions"]
        assert "inv:eliminar" not in body["permissions"]

    def test_login_wrong_password(self, client, db_session, sample_tenant):
        db_session.add(User(tenant_id=sample_tenant.id, email="mal@repuestos.com.ar",
                            password=hash_password("correcta"), legacy_role="VENDEDOR"))
        db_session.commit()

        response = client.post("/api/v1/auth/login", json={
            "email": "mal@repuestos.com.ar", "password": "incorrecta"
        })

        assert response.status_code == 401

    def test_admin_me(self, client, admin_headers):
        response = client.get("/api/v1/auth/me", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["permissions"] == [ALL_PERMISSIONS]

    def test_inactive_user_rejected(self, client, db_session, seller_user, seller_headers):
        seller_user.is_active = False
        db_session.commit()

        response = client.get("/api/v1/auth/me", headers=seller_headers)

        assert response.status_code == 401

    def test_token_with_wrong_tenant_rejected(self, client, seller_user, other_tenant):
        token = create_access_token({"sub": str(seller_user.id), "tenant_id": str(other_tenant.id)})

        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_garbage_token_rejected(self, client):
        response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer no-es-un-jwt"})

        assert response.status_code == 401
