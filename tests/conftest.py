import os
import tempfile
from decimal import Decimal

import pytest

# Set test environment variables
os.environ["TESTING"] = "true"
os.environ["WAIFU_LOG_JSON"] = "false"


@pytest.fixture
def app():
    """Create and configure a new backend app with a fresh database for each test."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    from src.factory import create_app
    from src.database import db

    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "GATEWAY_MODE": "stub",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "AI_SERVICE_URL": "http://ai.test",
        "FRONTEND_URL": "http://frontend.test",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def gateways(app):
    """The stub gateways the app was built with."""
    return app.extensions['gateways']


@pytest.fixture
def make_user(app):
    from src.database import db
    from src.models.user import User

    def _make(username="alice", email=None, password="secret123", stripe_account_id=None):
        user = User(username=username, email=email or f"{username}@example.com",
                    stripe_account_id=stripe_account_id)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def auth_headers(app):
    from src.middleware.auth import issue_token

    def _headers(user):
        return {"x-auth-token": issue_token(user)}

    return _headers


@pytest.fixture
def make_character(app):
    from src.database import db
    from src.models.character import Character

    def _make(creator, name="Sakura", is_public=True, **fields):
        data = {
            "description": "A cheerful nurse with pink hair",
            "personality": "kind and caring",
            "image_url": "https://example.com/sakura.png",
            "interests": [],
            "liked_by": [],
        }
        data.update(fields)
        character = Character(creator_id=creator.id, name=name, is_public=is_public, **data)
        db.session.add(character)
        db.session.commit()
        return character

    return _make


@pytest.fixture
def make_merchandise(app):
    from src.database import db
    from src.models.merchandise import Merchandise
    from src.services.catalog import default_variants

    def _make(character, name="Sakura Tee", price="40.00", production_cost="10.00",
              platform_fee_percent=20, stock=100, category="t-shirt", variants=None):
        merchandise = Merchandise(
            name=name,
            description="Soft cotton tee",
            price=Decimal(price),
            image_url="https://example.com/tee.png",
            category=category,
            available_sizes=["S", "M", "L"],
            available_colors=["Black", "White"],
            character_id=character.id,
            creator_id=character.creator_id,
            stock=stock,
            sold=0,
            production_cost=Decimal(production_cost),
            creator_revenue_percent=100 - platform_fee_percent,
            platform_fee_percent=platform_fee_percent,
            printful_variants=default_variants(category) if variants is None else variants,
        )
        db.session.add(merchandise)
        db.session.commit()
        return merchandise

    return _make


@pytest.fixture
def address():
    return {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "street": "1 Analytical Way",
        "city": "London",
        "state": "",
        "postal_code": "N1 9GU",
        "country": "GB",
        "email": "ada@example.com",
        "phone": "+44 20 0000 0000",
    }
