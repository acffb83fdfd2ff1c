# tests/conftest.py
import pytest

import mailer
from app import create_app
from auth_guard import issue_token
from config import TestingConfig
from db import db
from models.user import Role, User


@pytest.fixture
def app(tmp_path):
    app = create_app(TestingConfig)
    app.config.update(
        BACKUP_DIR=str(tmp_path / "backups"),
        TEMP_DIR=str(tmp_path / "temp"),
        CACHE_DIR=str(tmp_path / "cache"),
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def sent_mail(monkeypatch):
    """Collects (to, subject) for every email the app tries to send."""
    outbox = []

    def fake_send(to, subject, html, text=None):
        outbox.append((to, subject))

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return outbox


def make_user(email, role=Role.STUDENT, password=None, **fields):
    user = User(name=fields.pop("name", email.split("@")[0].title()), email=email, role=role.value, **fields)
    if password:
        user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin(app):
    return make_user("admin@campus.test", Role.ADMIN, password="secret123")


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {issue_token(admin)}"}


@pytest.fixture
def user_factory(app):
    return make_user
