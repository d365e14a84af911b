import pytest

from finance_tracker.accounts import IdentityProfile, check_user, create_account
from finance_tracker.models import db
from finance_tracker.webapp import create_app

from helpers import FakeMailer


@pytest.fixture
def app():
    app = create_app(
        test_config={
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "TRANSACTION_RATE_LIMIT": 1000,
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user(app):
    return check_user(
        IdentityProfile(id="user_ada", email="ada@example.com", first_name="Ada", last_name="Lovelace")
    )


@pytest.fixture
def other_user(app):
    return check_user(IdentityProfile(id="user_bob", email="bob@example.com", first_name="Bob"))


@pytest.fixture
def account(user):
    return create_account(user, {"name": "Checking", "balance": "1000.00"})


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def auth_headers():
    return {
        "X-User-Id": "user_ada",
        "X-User-Email": "ada@example.com",
        "X-User-Name": "Ada Lovelace",
    }
