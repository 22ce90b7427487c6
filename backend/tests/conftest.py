"""Shared fixtures: an app wired to mongomock with Cloudinary and Resend stubbed out."""

from unittest.mock import MagicMock

import cloudinary
import mongomock
import pytest

from backend import mailer, media
from backend.app import create_app

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "mosaic-pass"


@pytest.fixture
def database():
    return mongomock.MongoClient().get_database("noble-mosaic-test")


@pytest.fixture
def media_stub(monkeypatch):
    """Replace every Cloudinary call the routes make."""
    stub = MagicMock()

    def fake_upload(image_file, folder=media.DEFAULT_FOLDER):
        name = image_file.filename.rsplit(".", 1)[0]
        return (
            f"https://res.cloudinary.com/demo/image/upload/v1/{folder}/{image_file.filename}",
            f"{folder}/{name}",
        )

    stub.upload_image.side_effect = fake_upload
    stub.delete_image.return_value = True
    stub.delete_image_urls.return_value = 0
    stub.delete_folder.return_value = True

    monkeypatch.setattr(media, "upload_image", stub.upload_image)
    monkeypatch.setattr(media, "delete_image", stub.delete_image)
    monkeypatch.setattr(media, "delete_image_urls", stub.delete_image_urls)
    monkeypatch.setattr(media, "delete_folder", stub.delete_folder)
    return stub


@pytest.fixture
def outbox(monkeypatch):
    """Capture verification codes instead of emailing them."""
    sent = []

    def fake_send(recipient_email, code, expiration_minutes):
        sent.append({"email": recipient_email, "code": code, "minutes": expiration_minutes})
        return True, None

    monkeypatch.setattr(mailer, "send_verification_code", fake_send)
    return sent


def make_app(database, **overrides):
    config = {
        "TESTING": True,
        "DATABASE": database,
        "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
        "JWT_COOKIE_SECURE": False,
        "ADMIN_USERNAME": ADMIN_USERNAME,
        "ADMIN_PASSWORD": ADMIN_PASSWORD,
        "ADMIN_PASSWORD_HASH": "",
        "RESEND_API_KEY": "",
        "CONTACT_NOTIFY_EMAIL": "",
        "CLOUDINARY_CLOUD_NAME": "",
    }
    config.update(overrides)
    return create_app(config)


def log_in(app):
    admin = app.test_client()
    response = admin.post(
        "/api/auth", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    return admin


@pytest.fixture
def app(database, media_stub, outbox):
    return make_app(database)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(app):
    return log_in(app)


@pytest.fixture
def unconfigured_cloudinary(monkeypatch):
    """Real media module with an SDK that has no credentials."""
    settings = cloudinary.config()
    monkeypatch.setattr(settings, "cloud_name", "demo", raising=False)
    for name in ("api_key", "api_secret", "oauth_token"):
        monkeypatch.setattr(settings, name, None, raising=False)
    return settings
