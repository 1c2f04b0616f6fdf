"""
Authorization tests for the pharmadist API.

Verifies:
- Unauthenticated requests return 401
- Expired, revoked and inactive-user tokens return 401
- Roles without a permission code get 403 naming the code
"""

from datetime import timedelta

import pytest

from conftest import auth_headers
from pharmadist.permissions import permissions_for_role, validate_role
from pharmadist.services.session_service import issue_token, revoke_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/quotes"),
            ("POST", "/api/quotes"),
            ("POST", "/api/quotes/1/process"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders/1/fulfill"),
            ("GET", "/api/stock/balances"),
            ("GET", "/api/stock/reservations"),
            ("GET", "/api/stock/fefo-suggestions"),
            ("GET", "/api/stock/expiry/summary"),
            ("POST", "/api/stock/shortages"),
            ("POST", "/api/stock/movements"),
            ("POST", "/api/stock/bulk-transfers"),
            ("GET", "/api/stock/movement-requests"),
            ("POST", "/api/stock/movement-requests/bulk-fulfill"),
            ("GET", "/api/catalog/products/1/presentations"),
        ],
    )
    def test_requires_auth(self, client, world, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_token(self, client, world):
        resp = client.get("/api/quotes", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_expired_token(self, client, world):
        _, token = issue_token(world.users.seller.id, ttl=timedelta(seconds=-1))
        resp = client.get("/api/quotes", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_revoked_token(self, client, world):
        _, token = issue_token(world.users.seller.id)
        assert revoke_token(token) is True

        resp = client.get("/api/quotes", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 401
        assert revoke_token(token) is False

    def test_deactivated_user_loses_session(self, client, world, db_session):
        headers = auth_headers(world.users.seller)
        world.users.seller.is_active = False
        db_session.commit()

        resp = client.get("/api/quotes", headers=headers)

        assert resp.status_code == 401


# =============================================================================
# MISSING PERMISSIONS (403)
# =============================================================================


class TestPermissionDenied:
    """Routes check permission codes, never role names."""

    @pytest.mark.parametrize(
        "role,method,path,code",
        [
            ("readonly", "POST", "/api/quotes", "SALES_WRITE"),
            ("readonly", "POST", "/api/stock/movements", "STOCK_MOVE"),
            ("seller", "POST", "/api/stock/movements", "STOCK_MOVE"),
            ("seller", "POST", "/api/stock/bulk-transfers", "STOCK_MOVE"),
            ("warehouse", "POST", "/api/quotes/1/process", "SALES_PROCESS"),
            ("warehouse", "POST", "/api/orders/1/cancel", "SALES_WRITE"),
            ("lp_seller", "POST", "/api/stock/movement-requests/1/cancel", "STOCK_MOVE"),
            ("warehouse", "POST", "/api/catalog/products/1/presentations", "CATALOG_WRITE"),
        ],
    )
    def test_denied(self, client, world, role, method, path, code):
        resp = getattr(client, method.lower())(path, json={}, headers=auth_headers(getattr(world.users, role)))
        assert resp.status_code == 403
        assert resp.json["required_permission"] == code


class TestRoles:

    def test_admin_holds_every_action_permission_but_no_scope(self):
        perms = permissions_for_role("admin")
        assert "STOCK_MOVE" in perms
        assert "SCOPE_BRANCH" not in perms

    def test_branch_roles_are_scoped(self):
        assert "SCOPE_BRANCH" in permissions_for_role("BRANCH_SELLER")
        assert "SCOPE_BRANCH" in permissions_for_role("BRANCH_WAREHOUSE")

    def test_unknown_role_has_nothing(self):
        assert permissions_for_role("CASHIER") == frozenset()
        assert validate_role("cashier") is False
        assert validate_role("seller") is True


# =============================================================================
# PUBLIC ENDPOINTS (NO AUTH REQUIRED)
# =============================================================================


class TestPublicEndpoints:
    """System health is public."""

    def test_health(self, client, world):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "ok"
        assert resp.json["checks"]["database"]["status"] == "healthy"
        assert resp.json["timestamp"].endswith("Z")
