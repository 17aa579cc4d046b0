import os
from datetime import date
from types import SimpleNamespace

import pytest
from flask import g

from app import create_app
from utilities.database import db, Category, Equipment, User


@pytest.fixture
def app(tmp_path):
    os.environ["ENV"] = "testing"

    application = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_path / 'test.db').as_posix()}",
            "DATA_DIR": str(tmp_path),
            "LOG_FILE": str(tmp_path / "logs" / "kitroom.log"),
        }
    )

    # Requests share the fixture app context, so each one must reload its own user
    @application.before_request
    def _reset_login_cache():
        g.pop("_login_user", None)

    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()

    os.environ.pop("ENV", None)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(username, role="user", pin="5555", name=None, is_active=True):
        user = User(
            username=username,
            name=name or username.title(),
            email=f"{username}@example.com",
            role=role,
            is_active=is_active,
        )
        user.set_pin(pin)
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_category(app):
    def _make_category(name, color=None):
        category = Category(name=name, color=color)
        db.session.add(category)
        db.session.commit()
        return category

    return _make_category


@pytest.fixture
def make_equipment(app):
    def _make_equipment(name="Canon R5", barcode=None, status="available", condition="normal", **extra):
        unit = Equipment(
            name=name,
            barcode=barcode,
            status=status,
            condition=condition,
            location=extra.pop("location", "studio"),
            purchase_date=extra.pop("purchase_date", date(2024, 3, 1)),
            **extra,
        )
        db.session.add(unit)
        db.session.commit()
        return unit

    return _make_equipment


@pytest.fixture
def admin_user(make_user):
    user = make_user("admin", role="admin", pin="1234", name="Test Admin")
    return SimpleNamespace(id=user.id, name=user.name)


@pytest.fixture
def borrower(make_user):
    user = make_user("jamie", pin="2468", name="Jamie Borrower")
    return SimpleNamespace(id=user.id, name=user.name)


@pytest.fixture
def other_user(make_user):
    user = make_user("riley", pin="1357", name="Riley Other")
    return SimpleNamespace(id=user.id, name=user.name)


def login(client, pin):
    response = client.post("/api/auth/login", json={"pin": pin})
    assert response.status_code == 200
    return client


@pytest.fixture
def auth_client(client, admin_user):
    return login(client, "1234")


@pytest.fixture
def borrower_client(app, borrower):
    return login(app.test_client(), "2468")


@pytest.fixture
def other_client(app, other_user):
    return login(app.test_client(), "1357")
