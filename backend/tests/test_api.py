"""
API tests through the Flask test client.

Verifies:
- Missing request context returns 401, bad role/store id 400, wrong role 403
- Dispatch, admission and cancellation endpoints
- Sale/order finalization, confirmation on delete
- Defect multipart upload, ledger report, health
"""

import io

import pytest

from conftest import context_headers, stock


# =============================================================================
# REQUEST CONTEXT
# =============================================================================


class TestRequestContext:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/stores"),
            ("GET", "/api/inventory"),
            ("GET", "/api/inventory-dispatch"),
            ("POST", "/api/sales"),
            ("GET", "/api/social-orders"),
            ("GET", "/api/defects"),
            ("GET", "/api/accounting"),
        ],
    )
    def test_requires_user_name(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_role(self, client, db_session):
        resp = client.get("/api/stores", headers={"X-User-Name": "x", "X-User-Role": "root"})
        assert resp.status_code == 400

    def test_bad_store_id(self, client, db_session):
        resp = client.get("/api/stores", headers={"X-User-Name": "x", "X-Store-Id": "main"})
        assert resp.status_code == 400

    def test_cashier_cannot_create_store(self, client, cashier_headers):
        resp = client.post("/api/stores", json={"name": "Evil Outlet"}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_cashier_cannot_read_ledger(self, client, cashier_headers):
        assert client.get("/api/accounting", headers=cashier_headers).status_code == 403

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["database"]["status"] == "healthy"


# =============================================================================
# CATALOG
# =============================================================================


class TestCatalog:

    def test_create_store_product_and_batch(self, client, db_session, admin_headers):
        resp = client.post("/api/stores", json={"name": "Uttara", "code": "UTT"}, headers=admin_headers)
        assert resp.status_code == 201
        store_id = resp.get_json()["id"]

        resp = client.post(
            "/api/products",
            json={"name": "Linen Shirt", "attributes": {"Colour": "Blue", "Image": ["a.jpg", "b.jpg"]}},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        product_id = resp.get_json()["id"]

        resp = client.post(
            "/api/batches",
            json={"productId": product_id, "costPrice": 400, "sellingPrice": 650, "quantity": 3, "storeId": store_id},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        base = body["batch"]["baseCode"]
        assert [u["barcode"] for u in body["units"]] == [f"{base}-1", f"{base}-2", f"{base}-3"]
        assert all(u["location"] == "Uttara" for u in body["units"])

    def test_invalid_attribute_shape(self, client, db_session, admin_headers):
        resp = client.post("/api/products", json={"name": "X", "attributes": {"Colour": ["Red"]}}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["details"]["field"] == "Colour"

    def test_unknown_field_rejected(self, client, db_session, admin_headers):
        resp = client.post("/api/stores", json={"name": "Y", "owner": "z"}, headers=admin_headers)
        assert resp.status_code == 400


# =============================================================================
# INVENTORY & DISPATCH
# =============================================================================


class TestDispatchApi:

    def test_round_trip(self, client, db_session, main_units, main_store, branch_store, admin_headers, outlet_headers):
        code = main_units[0].barcode
        resp = client.post(
            "/api/inventory-dispatch",
            json={"fromStoreId": main_store.id, "toStoreId": branch_store.id, "barcodes": [code]},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["count"] == 1

        resp = client.get(f"/api/inventory-dispatch/upcoming?storeId={branch_store.id}", headers=outlet_headers)
        assert [r["barcode"] for r in resp.get_json()] == [code]

        resp = client.post("/api/inventory-dispatch/admit", json={"barcode": code}, headers=outlet_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "completed"

        resp = client.get(f"/api/inventory/barcode/{code}", headers=outlet_headers)
        body = resp.get_json()
        assert body["location"] == branch_store.name
        assert body["status"] == "available"
        assert body["sellable"] is True

        resp = client.post("/api/inventory-dispatch/admit", json={"barcode": code}, headers=outlet_headers)
        assert resp.status_code == 404

    def test_short_dispatch_is_409_and_writes_nothing(self, client, db_session, main_units, main_store,
                                                       branch_store, product, admin_headers):
        resp = client.post(
            "/api/inventory-dispatch",
            json={"fromStoreId": main_store.id, "toStoreId": branch_store.id,
                  "products": [{"productId": product.id, "quantity": 6}]},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        assert resp.get_json()["details"]["items"][0]["available"] == 5

        resp = client.get("/api/inventory-dispatch", headers=admin_headers)
        assert resp.get_json() == []

    def test_outlet_user_limited_to_own_store(self, client, db_session, main_units, main_store, branch_store,
                                              outlet_headers):
        resp = client.post(
            "/api/inventory-dispatch",
            json={"fromStoreId": main_store.id, "toStoreId": branch_store.id, "barcodes": [main_units[0].barcode]},
            headers=outlet_headers,
        )
        assert resp.status_code == 403

    def test_cashier_cannot_dispatch(self, client, db_session, main_units, main_store, branch_store, cashier_headers):
        resp = client.post(
            "/api/inventory-dispatch",
            json={"fromStoreId": main_store.id, "toStoreId": branch_store.id, "barcodes": [main_units[0].barcode]},
            headers=cashier_headers,
        )
        assert resp.status_code == 403

    def test_put_completes_and_delete_cancels(self, client, db_session, main_units, main_store, branch_store,
                                              manager_headers):
        first, second = main_units[0].barcode, main_units[1].barcode
        resp = client.post(
            "/api/inventory-dispatch",
            json={"fromStoreId": main_store.id, "toStoreId": branch_store.id, "barcodes": [first, second]},
            headers=manager_headers,
        )
        ids = [r["id"] for r in resp.get_json()["dispatches"]]

        resp = client.put("/api/inventory-dispatch", json={"id": ids[0], "status": "completed"}, headers=manager_headers)
        assert resp.status_code == 200
        resp = client.put("/api/inventory-dispatch", json={"id": ids[1], "status": "in-transit"}, headers=manager_headers)
        assert resp.status_code == 400

        resp = client.delete(f"/api/inventory-dispatch/{ids[1]}", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()["unit"]["location"] == main_store.name

        resp = client.delete(f"/api/inventory-dispatch/{ids[0]}", headers=manager_headers)
        assert resp.status_code == 400

    def test_reconciliation_endpoint(self, client, db_session, admin_headers):
        resp = client.get("/api/inventory-dispatch/reconciliation", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json() == {"issues": [], "count": 0}

    def test_available_listing(self, client, db_session, main_units, main_store, product, cashier_headers):
        resp = client.get(
            f"/api/inventory/available?location={main_store.name}&productId={product.id}",
            headers=cashier_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 5

    def test_direct_in_transit_update_refused(self, client, db_session, main_units, admin_headers):
        resp = client.put("/api/inventory", json={"id": main_units[0].id, "status": "in-transit"}, headers=admin_headers)
        assert resp.status_code == 400

    @pytest.mark.parametrize("status", ["sold", "available", "defective"])
    def test_direct_update_of_dispatched_unit_refused(self, client, db_session, main_units, main_store,
                                                      branch_store, admin_headers, status):
        unit_id, code = main_units[0].id, main_units[0].barcode
        resp = client.post(
            "/api/inventory-dispatch",
            json={"fromStoreId": main_store.id, "toStoreId": branch_store.id, "barcodes": [code]},
            headers=admin_headers,
        )
        assert resp.status_code == 201

        resp = client.put("/api/inventory", json={"id": unit_id, "status": status}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["details"]["barcode"] == code

        body = client.get(f"/api/inventory/barcode/{code}", headers=admin_headers).get_json()
        assert body["status"] == "in-transit"
        assert body["location"] == f"In Transit to {branch_store.name}"

        resp = client.get("/api/inventory-dispatch/reconciliation", headers=admin_headers)
        assert resp.get_json()["count"] == 0


# =============================================================================
# SALES & ORDERS
# =============================================================================


class TestSalesApi:

    def test_reserve_then_sell(self, client, db_session, main_units, main_store, product, cashier_headers):
        resp = client.post("/api/sales/reserve", json={"productId": product.id, "quantity": 2}, headers=cashier_headers)
        assert resp.status_code == 200
        codes = resp.get_json()["barcodes"]
        assert len(codes) == 2

        resp = client.post(
            "/api/sales",
            json={
                "items": [{"productId": product.id, "qty": 2, "price": 500, "barcodes": codes}],
                "amounts": {"vatRate": 5, "transportCost": 60, "subtotal": 1000, "vat": 50, "total": 1110},
                "payments": {"cash": 1000, "transactionFee": 10, "totalPaid": 1000, "due": 100},
            },
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        sale = resp.get_json()
        assert sale["amounts"]["total"] == 1110
        assert sale["payments"]["due"] == 100
        assert sale["salesBy"] == "cara"
        assert sale["outlet"] == main_store.name

    def test_reserve_exclude_must_be_list(self, client, db_session, main_units, product, cashier_headers):
        held = main_units[0].barcode
        resp = client.post(
            "/api/sales/reserve",
            json={"productId": product.id, "quantity": 1, "exclude": held},
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["details"]["field"] == "exclude"

        resp = client.post(
            "/api/sales/reserve",
            json={"productId": product.id, "quantity": 1, "exclude": [held]},
            headers=cashier_headers,
        )
        assert resp.get_json()["barcodes"] == [main_units[1].barcode]

    def test_dispatch_barcodes_must_be_list(self, client, db_session, main_units, main_store, branch_store,
                                            admin_headers):
        resp = client.post(
            "/api/inventory-dispatch",
            json={"fromStoreId": main_store.id, "toStoreId": branch_store.id, "barcodes": main_units[0].barcode},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["details"] == {"field": "barcodes"}

    def test_reserve_short_is_409(self, client, db_session, main_units, product, cashier_headers):
        resp = client.post("/api/sales/reserve", json={"productId": product.id, "quantity": 9}, headers=cashier_headers)
        assert resp.status_code == 409

    def test_amount_mismatch_is_400(self, client, db_session, main_units, product, cashier_headers):
        resp = client.post(
            "/api/sales",
            json={
                "items": [{"productId": product.id, "qty": 1, "price": 1000}],
                "amounts": {"vatRate": 5, "total": 999},
            },
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["details"]["field"] == "amounts.total"

    def test_delete_needs_confirmation(self, client, db_session, main_units, product, cashier_headers, manager_headers):
        resp = client.post(
            "/api/sales",
            json={"items": [{"productId": product.id, "qty": 1, "price": 1000}]},
            headers=cashier_headers,
        )
        sale_id = resp.get_json()["id"]

        assert client.delete(f"/api/sales/{sale_id}", headers=cashier_headers).status_code == 403
        assert client.delete(f"/api/sales/{sale_id}", headers=manager_headers).status_code == 428
        assert client.delete(f"/api/sales/{sale_id}?confirm=true", headers=manager_headers).status_code == 200
        assert client.get(f"/api/sales/{sale_id}", headers=manager_headers).status_code == 404

    def test_order_exchange(self, client, db_session, main_store, product, other_product, manager_headers):
        stock(main_store, product, 2)
        stock(main_store, other_product, 1)
        resp = client.post(
            "/api/social-orders",
            json={
                "customer": {"name": "Karim", "phone": "0181"},
                "items": [{"id": "L1", "productId": product.id, "qty": 2, "price": 500}],
                "amounts": {"vatRate": 0},
                "payments": {"sslCommerz": 1000},
            },
            headers=manager_headers,
        )
        assert resp.status_code == 201
        order_id = resp.get_json()["id"]

        resp = client.post(
            "/api/social-orders/exchange",
            json={
                "orderId": order_id,
                "removedProducts": [{"productId": "L1", "quantity": 2}],
                "replacementProducts": [{"id": other_product.id, "name": "Silk Saree", "price": 700, "quantity": 1}],
            },
            headers=manager_headers,
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["difference"] == -300
        assert body["order"]["exchangeHistory"][0]["id"] == body["exchange"]["id"]


# =============================================================================
# DEFECTS
# =============================================================================


class TestDefectsApi:

    def test_multipart_defect_with_image(self, client, db_session, main_units, main_store, manager_headers):
        code = main_units[0].barcode
        resp = client.post(
            "/api/defects",
            data={
                "barcode": code,
                "storeId": str(main_store.id),
                "returnReason": "Torn",
                "image": (io.BytesIO(b"\x89PNG"), "../torn sleeve.png"),
            },
            content_type="multipart/form-data",
            headers=manager_headers,
        )
        assert resp.status_code == 201
        defect = resp.get_json()
        assert defect["image"] == "torn_sleeve.png"
        assert defect["addedBy"] == "mina"

        resp = client.get(f"/api/inventory/barcode/{code}", headers=manager_headers)
        assert resp.get_json()["status"] == "defective"

        resp = client.delete(f"/api/defects/{defect['id']}", headers=manager_headers)
        assert resp.status_code == 428

    def test_only_approval_via_put(self, client, db_session, main_units, main_store, manager_headers):
        resp = client.post(
            "/api/defects",
            json={"barcode": main_units[0].barcode, "storeId": main_store.id, "returnReason": "Hole"},
            headers=manager_headers,
        )
        defect_id = resp.get_json()["id"]
        assert client.put(f"/api/defects/{defect_id}", json={"status": "sold"}, headers=manager_headers).status_code == 400
        resp = client.put(f"/api/defects/{defect_id}", json={"status": "approved"}, headers=manager_headers)
        assert resp.get_json()["status"] == "approved"


# =============================================================================
# ACCOUNTING
# =============================================================================


class TestAccountingApi:

    def test_report_shape(self, client, db_session, main_units, admin_headers):
        resp = client.get("/api/accounting", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert set(body) == {"journalEntries", "ledgerAccounts", "incomeStatement", "skipped"}
        assert len(body["ledgerAccounts"]) == 11
        for entry in body["journalEntries"]:
            assert entry["totalDebit"] == entry["totalCredit"]

    def test_transactions_filter(self, client, db_session, main_units, admin_headers):
        resp = client.get("/api/transactions?type=batch", headers=admin_headers)
        assert resp.status_code == 200
        assert [t["type"] for t in resp.get_json()] == ["batch"]
        assert client.get("/api/transactions?type=bogus", headers=admin_headers).status_code == 400
