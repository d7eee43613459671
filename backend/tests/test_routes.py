"""
API tests for StockWatch.

Verifies:
- Unauthenticated requests return 401
- Role gates return 403
- Catalogue, import, sales, user and audit endpoints end to end
"""

import io
from datetime import datetime
from decimal import Decimal

import pytest

from conftest import make_product, make_user
from stockwatch.extensions import db
from stockwatch.models import AuditLog, Product, User
from stockwatch.services import audit_service, quota_service
from stockwatch.services.audit_details import ProductCreated


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("PATCH", "/api/products/x"),
            ("POST", "/api/products/bulk-delete"),
            ("POST", "/api/products/import"),
            ("POST", "/api/products/import/preview"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales/x/return"),
            ("GET", "/api/users"),
            ("GET", "/api/audit-logs"),
            ("POST", "/api/audit-logs/filter"),
            ("GET", "/api/system/edit-count"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_token(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


# =============================================================================
# ROLE GATES (403)
# =============================================================================


class TestSellerDenied:
    """Seller role cannot perform privileged operations."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("POST", "/api/users"),
            ("POST", "/api/users/bulk-delete"),
            ("DELETE", "/api/products/x"),
            ("POST", "/api/products/bulk-delete"),
            ("POST", "/api/products/import"),
            ("POST", "/api/products/import/preview"),
            ("GET", "/api/audit-logs"),
            ("POST", "/api/audit-logs/filter"),
            ("GET", "/api/audit-logs/recent-imports"),
            ("POST", "/api/products/x/increase-stock"),
        ],
    )
    def test_forbidden(self, client, seller_headers, method, path):
        resp = getattr(client, method.lower())(path, json={}, headers=seller_headers)
        assert resp.status_code == 403, f"{method} {path} returned {resp.status_code}"

    def test_manager_cannot_manage_users(self, client, manager_headers):
        resp = client.get("/api/users", headers=manager_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["admin"]

    def test_manager_cannot_list_full_audit_log(self, client, manager_headers):
        assert client.get("/api/audit-logs", headers=manager_headers).status_code == 403


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProducts:
    def test_create(self, client, seller_headers):
        resp = client.post(
            "/api/products",
            json={"sku": "RICE", "name": "Rice", "price": 8, "unit": "kg"},
            headers=seller_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["barcode"] == "RICE"
        assert body["price"] == 8.0
        assert db.session.query(AuditLog).filter_by(action="CREATE_PRODUCT").count() == 1

    def test_create_requires_fields(self, client, seller_headers):
        resp = client.post("/api/products", json={"name": "Rice"}, headers=seller_headers)
        assert resp.status_code == 400

    def test_create_rejects_negative_price(self, client, seller_headers):
        resp = client.post("/api/products", json={"sku": "R", "name": "Rice", "price": -1}, headers=seller_headers)
        assert resp.status_code == 400

    def test_duplicate_sku(self, client, seller_headers):
        make_product("Rice", sku="RICE")
        resp = client.post("/api/products", json={"sku": "RICE", "name": "Other", "price": 1}, headers=seller_headers)
        assert resp.status_code == 409

    def test_update_price_drop_is_flagged(self, client, manager_headers):
        p = make_product("Rice", price="10")
        resp = client.patch(f"/api/products/{p.id}", json={"price": 5}, headers=manager_headers)

        assert resp.status_code == 200
        entry = db.session.query(AuditLog).filter_by(action="UPDATE_PRODUCT").one()
        assert entry.risk_flags == ["price_drop"]
        assert entry.previous_snapshot["price"] == 10.0

    def test_update_without_fields(self, client, seller_headers):
        p = make_product("Rice")
        resp = client.patch(f"/api/products/{p.id}", json={}, headers=seller_headers)
        assert resp.status_code == 400

    def test_update_missing(self, client, seller_headers):
        resp = client.patch("/api/products/missing", json={"stock": 1}, headers=seller_headers)
        assert resp.status_code == 404

    def test_list_paginated(self, client, seller_headers):
        for i in range(3):
            make_product(f"Item {i}")
        body = client.get("/api/products?page=1&per_page=2", headers=seller_headers).get_json()
        assert len(body["items"]) == 2
        assert body["pagination"]["total"] == 3

    def test_bulk_delete_is_flagged(self, client, manager_headers):
        ids = [make_product(f"Item {i}").id for i in range(5)]
        resp = client.post("/api/products/bulk-delete", json={"ids": ids}, headers=manager_headers)

        assert resp.get_json() == {"ok": True, "deleted": 5}
        entries = db.session.query(AuditLog).filter_by(action="DELETE_PRODUCT").all()
        assert len(entries) == 5
        assert all(e.risk_flags == ["bulk_delete"] for e in entries)
        assert db.session.query(Product).count() == 0

    def test_bulk_delete_is_all_or_nothing(self, client, manager_headers):
        p = make_product("Rice")
        resp = client.post("/api/products/bulk-delete", json={"ids": [p.id, "missing"]}, headers=manager_headers)

        assert resp.status_code == 404
        assert db.session.query(Product).count() == 1

    def test_increase_stock(self, client, manager_headers):
        p = make_product("Rice", stock="2", price="10")
        resp = client.post(
            f"/api/products/{p.id}/increase-stock",
            json={"quantity": 3, "price": 12},
            headers=manager_headers,
        )

        assert resp.status_code == 200
        assert resp.get_json()["stock"] == 5.0
        assert resp.get_json()["price"] == 12.0
        assert db.session.query(AuditLog).filter_by(action="INCREASE_STOCK").count() == 1

    def test_seller_cannot_reprice_through_stock_receipt(self, client, seller, seller_headers):
        p = make_product("Rice", stock="2", price="100")
        for _ in range(5):
            quota_service.increment(seller.id, seller.role)
        db.session.commit()

        blocked = client.patch(f"/api/products/{p.id}", json={"price": 1}, headers=seller_headers)
        resp = client.post(
            f"/api/products/{p.id}/increase-stock",
            json={"quantity": 1, "price": 1},
            headers=seller_headers,
        )

        assert blocked.status_code == 403
        assert resp.status_code == 403
        db.session.refresh(p)
        assert p.price == Decimal("100")
        assert p.stock == Decimal("2")
        assert db.session.query(AuditLog).count() == 0


# =============================================================================
# IMPORTS
# =============================================================================


class TestImports:
    ROWS = [
        {"name": "Rice", "unit": "kg", "price": 8, "stock": 3},
        {"name": "Oil", "price": 10},
    ]

    def test_json_import(self, client, manager_headers):
        resp = client.post(
            "/api/products/import",
            json={"products": self.ROWS, "mode": "merge"},
            headers=manager_headers,
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert (body["added"], body["updated"], body["removed"]) == (2, 0, 0)
        assert len(body["details"]["added"]) == 2
        entry = db.session.get(AuditLog, body["audit_id"])
        assert entry.action == "PRODUCT_IMPORT"
        assert entry.ip_address is not None

    def test_file_import(self, client, admin_headers):
        make_product("Rice", unit="kg", price="8", stock="1")
        data = {
            "mode": "reset",
            "file": (io.BytesIO(b"name,unit,price,stock\nOil,each,10,4\n"), "stock.csv"),
        }
        resp = client.post(
            "/api/products/import",
            data=data,
            headers=admin_headers,
            content_type="multipart/form-data",
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert (body["added"], body["removed"]) == (1, 1)
        assert [p.name for p in db.session.query(Product).all()] == ["Oil"]

    def test_imports_do_not_consume_quota(self, client, manager, manager_headers):
        resp = client.post("/api/products/import", json={"products": self.ROWS, "mode": "merge"}, headers=manager_headers)
        assert resp.status_code == 200
        body = client.get("/api/system/edit-count", headers=manager_headers).get_json()
        assert body == {"count": 0, "limit": 20, "can_edit": True}

    def test_invalid_mode(self, client, manager_headers):
        resp = client.post(
            "/api/products/import",
            json={"products": self.ROWS, "mode": "replace"},
            headers=manager_headers,
        )
        assert resp.status_code == 400

    def test_missing_mode_is_rejected(self, client, manager_headers):
        make_product("Rice", unit="kg", price="8", stock="1")
        resp = client.post("/api/products/import", json={"products": self.ROWS}, headers=manager_headers)

        assert resp.status_code == 400
        assert "mode" in resp.get_json()["error"]
        assert [p.name for p in db.session.query(Product).all()] == ["Rice"]
        assert db.session.query(AuditLog).count() == 0

    def test_upload_without_mode_is_rejected(self, client, manager_headers):
        resp = client.post(
            "/api/products/import",
            data={"file": (io.BytesIO(b"name,unit,price,stock\nOil,each,10,4\n"), "stock.csv")},
            headers=manager_headers,
            content_type="multipart/form-data",
        )

        assert resp.status_code == 400
        assert db.session.query(Product).count() == 0

    def test_unreadable_upload(self, client, manager_headers):
        resp = client.post(
            "/api/products/import",
            data={"mode": "merge", "file": (io.BytesIO(b"not a workbook"), "stock.xlsx")},
            headers=manager_headers,
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400

    def test_preview(self, client, manager_headers):
        make_product("Rice", unit="kg", price="8")
        resp = client.post(
            "/api/products/import/preview",
            json={"products": self.ROWS + [{"name": "Milk", "unit": "litre"}], "mode": "merge"},
            headers=manager_headers,
        )

        body = resp.get_json()
        assert (body["to_add"], body["to_update"], body["to_remove"]) == (2, 1, 0)
        assert any(w["field"] == "unit" for w in body["warnings"])
        assert db.session.query(AuditLog).count() == 0


# =============================================================================
# SALES
# =============================================================================


class TestSales:
    def _sell(self, client, headers, product, quantity=1, discount=0):
        return client.post(
            "/api/sales",
            json={
                "items": [{"product_id": product.id, "quantity": quantity}],
                "payment_method": "cash",
                "discount_amount": discount,
            },
            headers=headers,
        )

    def test_create_and_return(self, client, seller_headers):
        p = make_product("Rice", price="10", stock="5")
        sale = self._sell(client, seller_headers, p, quantity=2).get_json()["sale"]

        resp = client.post(f"/api/sales/{sale['id']}/return", headers=seller_headers)
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "sale_id": sale["id"]}

        db.session.refresh(p)
        assert float(p.stock) == 5.0
        limit = client.get("/api/sales/returns/limit", headers=seller_headers).get_json()
        assert limit == {"count": 1, "limit": 5, "remaining": 4}

    def test_insufficient_stock(self, client, seller_headers):
        p = make_product("Rice", price="10", stock="1")
        resp = self._sell(client, seller_headers, p, quantity=2)
        assert resp.status_code == 400
        assert resp.get_json()["details"]["items"][0]["product_id"] == p.id

    def test_cannot_return_someone_elses_sale(self, client, seller_headers, manager_headers):
        p = make_product("Rice", price="10", stock="5")
        sale = self._sell(client, manager_headers, p).get_json()["sale"]

        resp = client.post(f"/api/sales/{sale['id']}/return", headers=seller_headers)
        assert resp.status_code == 403

    def test_return_missing_sale(self, client, seller_headers):
        assert client.post("/api/sales/missing/return", headers=seller_headers).status_code == 404

    def test_sellers_list_own_sales(self, client, seller_headers, manager_headers):
        p = make_product("Rice", price="10", stock="5")
        self._sell(client, seller_headers, p)
        self._sell(client, manager_headers, p)

        assert client.get("/api/sales", headers=seller_headers).get_json()["count"] == 1
        assert client.get("/api/sales", headers=manager_headers).get_json()["count"] == 2


# =============================================================================
# USERS
# =============================================================================


class TestUsers:
    def test_create(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={"name": "Ana", "username": "ana", "role": "seller"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert db.session.query(AuditLog).filter_by(action="CREATE_USER").count() == 1

    def test_duplicate_username(self, client, admin_headers):
        make_user("ana", "seller")
        resp = client.post(
            "/api/users",
            json={"name": "Ana", "username": "ana", "role": "seller"},
            headers=admin_headers,
        )
        assert resp.status_code == 409

    def test_cannot_delete_self(self, client, admin, admin_headers):
        resp = client.delete(f"/api/users/{admin.id}", headers=admin_headers)
        assert resp.status_code == 400

    def test_delete(self, client, admin_headers):
        u = make_user("ana", "seller")
        resp = client.delete(f"/api/users/{u.id}", headers=admin_headers)

        assert resp.status_code == 200
        entry = db.session.query(AuditLog).filter_by(action="DELETE_USER").one()
        assert entry.previous_snapshot["username"] == "ana"
        assert entry.risk_flags == []

    def test_bulk_delete_is_flagged(self, client, admin_headers):
        ids = [make_user(f"user{i}", "seller").id for i in range(5)]
        resp = client.post("/api/users/bulk-delete", json={"ids": ids}, headers=admin_headers)

        assert resp.get_json() == {"ok": True, "deleted": 5}
        entries = db.session.query(AuditLog).filter_by(action="DELETE_USER").all()
        assert all(e.risk_flags == ["bulk_delete"] for e in entries)
        assert db.session.query(User).count() == 1


# =============================================================================
# AUDIT LOG & SYSTEM
# =============================================================================


class TestAuditLog:
    @pytest.fixture
    def entries(self, db_session):
        audit_service.record(ProductCreated(name="Rice", sku="RICE"), user_id="u1", occurred_at=datetime(2026, 3, 1, 9))
        audit_service.record(ProductCreated(name="Oil", sku="OIL"), user_id="u2", occurred_at=datetime(2026, 3, 1, 15))

    def test_filter(self, client, entries, manager_headers):
        resp = client.post(
            "/api/audit-logs/filter",
            json={"start_date": "2026-03-01", "end_date": "2026-03-01", "user_id": "all", "start_hour": 8, "end_hour": 10},
            headers=manager_headers,
        )
        body = resp.get_json()
        assert body["count"] == 1
        assert body["items"][0]["user_id"] == "u1"

    def test_filter_csv(self, client, entries, admin_headers):
        resp = client.post(
            "/api/audit-logs/filter?format=csv",
            json={"start_date": "2026-03-01", "end_date": "2026-03-01", "user_id": "u2"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert 'filename="audit_2026-03-01_2026-03-01.csv"' in resp.headers["Content-Disposition"]
        assert len(resp.get_data(as_text=True).splitlines()) == 2

    @pytest.mark.parametrize(
        "body",
        [
            {"start_date": "2026-03-02", "end_date": "2026-03-01"},
            {"start_date": "2026-03-01"},
            {"start_date": "March", "end_date": "2026-03-01"},
            {"start_date": "2026-03-01", "end_date": "2026-03-01", "start_hour": "x", "end_hour": 3},
        ],
    )
    def test_invalid_filter(self, client, admin_headers, body):
        resp = client.post("/api/audit-logs/filter", json=body, headers=admin_headers)
        assert resp.status_code == 400

    def test_recent_imports(self, client, manager_headers):
        client.post("/api/products/import", json={"products": [{"name": "Rice"}], "mode": "merge"}, headers=manager_headers)
        body = client.get("/api/audit-logs/recent-imports", headers=manager_headers).get_json()
        assert body["count"] == 1
        assert body["items"][0]["details"]["added"] == 1

    def test_full_listing(self, client, entries, admin_headers):
        body = client.get("/api/audit-logs?limit=1", headers=admin_headers).get_json()
        assert body["count"] == 1


class TestSystem:
    def test_health(self, client, db_session):
        resp = client.get("/api/system/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_edit_count(self, client, seller_headers):
        p = make_product("Rice")
        client.patch(f"/api/products/{p.id}", json={"stock": 3}, headers=seller_headers)

        body = client.get("/api/system/edit-count", headers=seller_headers).get_json()
        assert body == {"count": 1, "limit": 5, "can_edit": True}
