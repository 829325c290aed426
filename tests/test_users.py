"""
Tests for the user account endpoints.
"""
from decimal import Decimal

from src.database import db
from src.models.purchase import CreatorPayout, Purchase, PurchaseItem
from src.services import balances


class TestRegisterLogin:
    """Registration and login."""

    def test_register(self, client):
        response = client.post("/api/users/register", json={
            "username": "alice", "email": "Alice@Example.com", "password": "secret123"})

        assert response.status_code == 201
        body = response.get_json()
        assert body["token"]
        assert body["user"]["email"] == "alice@example.com"
        assert "password" not in body["user"]
        assert "password_hash" not in body["user"]

    def test_register_duplicate(self, client, make_user):
        make_user("alice")
        response = client.post("/api/users/register", json={
            "username": "alice", "email": "new@example.com", "password": "secret123"})
        assert response.status_code == 400
        assert response.get_json()["message"] == "User already exists"

    def test_register_validation(self, client):
        response = client.post("/api/users/register", json={
            "username": "bob", "email": "not-an-email", "password": "123"})
        assert response.status_code == 400
        fields = response.get_json()["fields"]
        assert "email" in fields
        assert "password" in fields

    def test_login(self, client, make_user):
        make_user("alice")
        response = client.post("/api/users/login", json={
            "email": "alice@example.com", "password": "secret123"})
        assert response.status_code == 200
        assert response.get_json()["token"]

    def test_login_wrong_password(self, client, make_user):
        make_user("alice")
        response = client.post("/api/users/login", json={
            "email": "alice@example.com", "password": "wrong"})
        assert response.status_code == 400
        assert response.get_json()["message"] == "Invalid credentials"


class TestProfile:

    def test_requires_token(self, client):
        response = client.get("/api/users/profile")
        assert response.status_code == 401
        assert response.get_json()["message"] == "No token, authorization denied"

    def test_bad_token(self, client):
        response = client.get("/api/users/profile", headers={"x-auth-token": "garbage"})
        assert response.status_code == 401

    def test_bearer_token_accepted(self, client, make_user, auth_headers):
        user = make_user("alice")
        token = auth_headers(user)["x-auth-token"]
        response = client.get("/api/users/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.get_json()["username"] == "alice"

    def test_update_profile(self, client, make_user, auth_headers):
        user = make_user("alice")
        response = client.put("/api/users/profile", headers=auth_headers(user),
                              json={"bio": "I draw nurses", "username": "alice2"})
        assert response.status_code == 200
        assert response.get_json()["bio"] == "I draw nurses"
        assert response.get_json()["username"] == "alice2"

    def test_update_to_taken_username(self, client, make_user, auth_headers):
        user = make_user("alice")
        make_user("bob")
        response = client.put("/api/users/profile", headers=auth_headers(user), json={"username": "bob"})
        assert response.status_code == 400

    def test_public_profile(self, client, make_user):
        user = make_user("alice")
        body = client.get(f"/api/users/{user.id}").get_json()
        assert body["username"] == "alice"
        assert "email" not in body

    def test_unknown_user(self, client):
        assert client.get("/api/users/nobody").status_code == 404


class TestCreators:

    def test_lists_users_with_characters(self, client, make_user, make_character):
        make_character(make_user("creator"))
        make_user("lurker")
        names = [u["username"] for u in client.get("/api/users/creators").get_json()]
        assert names == ["creator"]


class TestBalance:

    def test_balance_and_payouts(self, client, make_user, make_character, make_merchandise, auth_headers):
        creator = make_user("creator")
        buyer = make_user("buyer")
        tee = make_merchandise(make_character(creator))
        purchase = Purchase(user_id=buyer.id, subtotal=Decimal("40.00"), total_amount=Decimal("40.00"),
                            shipping_address={}, is_paid=True, status="processing")
        purchase.items.append(PurchaseItem(
            merchandise_id=tee.id, merchandise_name=tee.name, creator_id=creator.id, quantity=1,
            unit_price=Decimal("40.00"), item_price=Decimal("40.00"), production_cost=Decimal("10.00"),
            platform_fee=Decimal("6.00"), creator_revenue=Decimal("24.00")))
        purchase.payouts.append(CreatorPayout(creator_id=creator.id, amount=Decimal("24.00")))
        db.session.add(purchase)
        balances.credit_pending(creator.id, Decimal("24.00"))
        db.session.commit()

        body = client.get("/api/users/balance", headers=auth_headers(creator)).get_json()
        assert body["balance"]["pending"] == 24.0
        assert body["derived"] == {"available": 0.0, "pending": 24.0, "total_earned": 24.0}
        assert body["payouts"][0]["amount"] == 24.0
