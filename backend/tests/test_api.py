"""
HTTP API tests.

Focus on the request surface: authentication, role checks, the mapping of
domain errors to status codes, and idempotency keys carried in headers.
"""

from posledger.extensions import db
from posledger.models import GiftCard, LedgerEntry

from conftest import auth_headers, get_auth_token


def admin_token(client, admin_user):
    return get_auth_token(client, "admin")


def create_product(client, token, sku, stock=5, price_cents=1000):
    response = client.post("/api/products", json={
        "sku": sku,
        "name": f"Product {sku}",
        "price_cents": price_cents,
        "opening_stock": stock,
    }, headers=auth_headers(token))
    assert response.status_code == 201, response.json
    return response.json["product"]


class TestAuth:
    def test_login_and_me(self, client, admin_user):
        token = get_auth_token(client, "admin")
        assert token

        response = client.get("/api/auth/me", headers=auth_headers(token))
        assert response.status_code == 200
        assert response.json["user"]["username"] == "admin"

    def test_bad_credentials(self, client, admin_user):
        response = client.post("/api/auth/login", json={"username": "admin", "password": "wrong"})

        assert response.status_code == 401
        assert response.json["error"] == "Invalid credentials"

    def test_missing_token(self, client, db_session):
        response = client.get("/api/products")

        assert response.status_code == 401

    def test_logout_revokes_token(self, client, admin_user):
        token = get_auth_token(client, "admin")

        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_cashier_cannot_create_products(self, client, cashier_user):
        token = get_auth_token(client, "cashier")

        response = client.post("/api/products", json={"sku": "X", "name": "X"}, headers=auth_headers(token))

        assert response.status_code == 403
        assert response.json["error"] == "Permission denied"
        assert "admin" in response.json["required_roles"]


class TestProductsAndSales:
    def test_product_with_opening_stock(self, client, admin_user):
        token = admin_token(client, admin_user)

        product = create_product(client, token, "API-1", stock=7)

        assert product["available_stock"] == 7
        history = client.get(f"/api/products/{product['id']}/stock-history", headers=auth_headers(token))
        assert history.status_code == 200
        assert history.json["entries"][0]["kind"] == "opening_stock"

    def test_duplicate_sku_conflicts(self, client, admin_user):
        token = admin_token(client, admin_user)
        create_product(client, token, "API-2")

        response = client.post("/api/products", json={"sku": "API-2", "name": "Again"}, headers=auth_headers(token))

        assert response.status_code == 409

    def test_unknown_field_rejected(self, client, admin_user):
        token = admin_token(client, admin_user)

        response = client.post("/api/products", json={"sku": "API-3", "name": "X", "stock": 9}, headers=auth_headers(token))

        assert response.status_code == 400

    def test_sale_flow_and_insufficient_stock(self, client, admin_user, cashier_user):
        token = admin_token(client, admin_user)
        product = create_product(client, token, "API-4", stock=2)
        cashier = get_auth_token(client, "cashier")

        ok = client.post("/api/sales", json={"items": [{"product_id": product["id"], "quantity": 2}]},
                         headers=auth_headers(cashier))
        assert ok.status_code == 201
        assert ok.json["sale"]["status"] == "completed"

        short = client.post("/api/sales", json={"items": [{"product_id": product["id"], "quantity": 1}]},
                            headers=auth_headers(cashier))
        assert short.status_code == 400
        assert short.json["error"] == f"Insufficient stock for product ID {product['id']}"

    def test_sale_idempotency_header(self, client, admin_user):
        token = admin_token(client, admin_user)
        product = create_product(client, token, "API-5", stock=5)
        body = {"items": [{"product_id": product["id"], "quantity": 1}]}

        first = client.post("/api/sales", json=body, headers=auth_headers(token, "checkout-abc"))
        second = client.post("/api/sales", json=body, headers=auth_headers(token, "checkout-abc"))

        assert first.json["sale"]["id"] == second.json["sale"]["id"]
        db.session.expire_all()
        refreshed = client.get(f"/api/products/{product['id']}", headers=auth_headers(token))
        assert refreshed.json["product"]["available_stock"] == 4

    def test_missing_sale_is_404(self, client, admin_user):
        token = admin_token(client, admin_user)

        response = client.get("/api/sales/999", headers=auth_headers(token))

        assert response.status_code == 404

    def test_return_over_limit_is_400(self, client, admin_user):
        token = admin_token(client, admin_user)
        product = create_product(client, token, "API-6", stock=5)
        sale = client.post("/api/sales", json={"items": [{"product_id": product["id"], "quantity": 1}]},
                           headers=auth_headers(token)).json["sale"]

        response = client.post("/api/returns", json={
            "sale_id": sale["id"],
            "items": [{"product_id": product["id"], "quantity": 2}],
            "reason": "Defective",
        }, headers=auth_headers(token))

        assert response.status_code == 400
        assert "Max returnable: 1" in response.json["error"]


class TestGiftCardsApi:
    def test_issue_redeem_and_history(self, client, admin_user):
        token = admin_token(client, admin_user)

        issued = client.post("/api/gift-cards", json={"initial_balance": "100.00"}, headers=auth_headers(token))
        assert issued.status_code == 201
        card = issued.json["gift_card"]
        assert card["current_balance_cents"] == 10000

        redeemed = client.post(f"/api/gift-cards/{card['id']}/redeem", json={"amount_cents": 3000},
                               headers=auth_headers(token))
        assert redeemed.status_code == 200
        assert redeemed.json["result"]["new_balance"] == 7000

        detail = client.get(f"/api/gift-cards/{card['id']}", headers=auth_headers(token))
        assert [t["kind"] for t in detail.json["transactions"]] == ["redeem", "issue"]

    def test_redeem_too_much_is_400(self, client, admin_user):
        token = admin_token(client, admin_user)
        card = client.post("/api/gift-cards", json={"initial_balance_cents": 500}, headers=auth_headers(token)).json["gift_card"]

        response = client.post(f"/api/gift-cards/{card['id']}/redeem", json={"amount_cents": 501},
                               headers=auth_headers(token))

        assert response.status_code == 400
        assert response.json["error"] == "Insufficient balance. Available: 5.00"

    def test_unknown_card_is_404(self, client, admin_user):
        token = admin_token(client, admin_user)

        response = client.post("/api/gift-cards/4040/redeem", json={"amount_cents": 1}, headers=auth_headers(token))

        assert response.status_code == 404
        assert response.json["error"] == "Gift card not found"

    def test_amount_validation(self, client, admin_user):
        token = admin_token(client, admin_user)
        card = client.post("/api/gift-cards", json={"initial_balance_cents": 500}, headers=auth_headers(token)).json["gift_card"]

        response = client.post(f"/api/gift-cards/{card['id']}/load", json={"amount_cents": -5},
                               headers=auth_headers(token))

        assert response.status_code == 400
        db.session.expire_all()
        assert db.session.get(GiftCard, card["id"]).current_balance_cents == 500


class TestRegistersApi:
    def test_open_twice_and_close(self, client, admin_user):
        token = admin_token(client, admin_user)

        opened = client.post("/api/registers/open", json={"opening_balance_cents": 10000}, headers=auth_headers(token))
        assert opened.status_code == 201

        again = client.post("/api/registers/open", json={"opening_balance_cents": 0}, headers=auth_headers(token))
        assert again.status_code == 400

        moved = client.post("/api/registers/cash-movements", json={
            "type": "cash_out", "amount_cents": 1000, "reason": "Bank run",
        }, headers=auth_headers(token))
        assert moved.status_code == 201

        closed = client.post("/api/registers/close", json={"closing_balance_cents": 9000}, headers=auth_headers(token))
        assert closed.status_code == 200
        assert closed.json["register"]["difference_cents"] == 0

    def test_close_without_open_is_404(self, client, admin_user):
        token = admin_token(client, admin_user)

        response = client.post("/api/registers/close", json={"closing_balance_cents": 0}, headers=auth_headers(token))

        assert response.status_code == 404


class TestLedgerApi:
    def test_verify_and_holder_history(self, client, admin_user):
        token = admin_token(client, admin_user)
        product = create_product(client, token, "API-7", stock=3)

        verify = client.get("/api/ledger/verify", headers=auth_headers(token))
        assert verify.status_code == 200
        assert verify.json["ok"] is True
        assert verify.json["checked"] >= 1

        history = client.get(f"/api/ledger/product_stock/{product['id']}", headers=auth_headers(token))
        assert history.status_code == 200
        assert history.json["check"]["ok"] is True
        assert history.json["entries"][0]["balance_after"] == 3

    def test_unknown_holder_type_is_400(self, client, admin_user):
        token = admin_token(client, admin_user)

        assert client.get("/api/ledger/verify?holder_type=bogus", headers=auth_headers(token)).status_code == 400
        assert client.get("/api/ledger/bogus/1", headers=auth_headers(token)).status_code == 400

    def test_cashier_cannot_read_ledger(self, client, cashier_user):
        token = get_auth_token(client, "cashier")

        assert client.get("/api/ledger/verify", headers=auth_headers(token)).status_code == 403


class TestSystemApi:
    def test_health(self, client, db_session):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json["status"] == "healthy"

    def test_version(self, client, db_session):
        response = client.get("/version")

        assert response.json["audit_delivery_mode"] == "best_effort"

    def test_store_transfer_over_api(self, client, admin_user):
        token = admin_token(client, admin_user)
        product = create_product(client, token, "API-8", stock=0)
        main = client.post("/api/stores", json={"code": "M1", "name": "Main"}, headers=auth_headers(token)).json["store"]
        annex = client.post("/api/stores", json={"code": "A1", "name": "Annex"}, headers=auth_headers(token)).json["store"]
        seeded = client.post(f"/api/stores/{main['id']}/stock", json={"product_id": product["id"], "quantity": 5},
                             headers=auth_headers(token))
        assert seeded.status_code == 201

        transfer = client.post("/api/transfers", json={
            "from_store_id": main["id"], "to_store_id": annex["id"], "product_id": product["id"], "quantity": 2,
        }, headers=auth_headers(token))
        assert transfer.status_code == 201

        approved = client.post(f"/api/transfers/{transfer.json['transfer']['id']}/approve", headers=auth_headers(token))
        assert approved.status_code == 200
        assert approved.json["transfer"]["status"] == "completed"

        db.session.expire_all()
        entries = db.session.query(LedgerEntry).filter_by(holder_type="store_stock", kind="transfer").count()
        assert entries == 2


class TestCreditAndAccountsApi:
    def test_credit_sale_and_payment(self, client, admin_user, customer):
        token = admin_token(client, admin_user)
        product = create_product(client, token, "API-9", stock=2, price_cents=5000)
        sale = client.post("/api/sales", json={
            "items": [{"product_id": product["id"], "quantity": 1}],
            "customer_id": customer.id,
            "payment_method": "credit",
        }, headers=auth_headers(token)).json["sale"]

        created = client.post("/api/credit-sales", json={
            "sale_id": sale["id"], "customer_id": customer.id, "total_amount_cents": 5000,
        }, headers=auth_headers(token))
        assert created.status_code == 201
        credit_id = created.json["credit_sale"]["id"]

        too_much = client.post(f"/api/credit-sales/{credit_id}/payments", json={"amount_cents": 6000},
                               headers=auth_headers(token))
        assert too_much.status_code == 400

        paid = client.post(f"/api/credit-sales/{credit_id}/payments", json={"amount": "50.00"},
                           headers=auth_headers(token))
        assert paid.status_code == 201
        assert paid.json["credit_sale"]["status"] == "paid"
        assert paid.json["result"]["new_balance"] == 0

    def test_account_postings(self, client, admin_user):
        token = admin_token(client, admin_user)
        account = client.post("/api/accounts", json={"code": "1100", "name": "Bank", "account_type": "asset"},
                              headers=auth_headers(token)).json["account"]

        posted = client.post(f"/api/accounts/{account['id']}/postings", json={"amount_cents": -1200},
                             headers=auth_headers(token))

        assert posted.status_code == 201
        assert posted.json["account"]["balance_cents"] == -1200
        ledger = client.get(f"/api/accounts/{account['id']}/ledger", headers=auth_headers(token))
        assert ledger.json["entries"][0]["delta"] == -1200

    def test_missing_account_is_404(self, client, admin_user):
        token = admin_token(client, admin_user)

        response = client.get("/api/accounts/777", headers=auth_headers(token))

        assert response.status_code == 404
