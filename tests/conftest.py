"""
Pytest configuration and fixtures.
"""
import base64
import os
import sys

import fitz
import pytest

# Add project root and this directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from signflow.config import Settings
from signflow.dependencies import build_services
from signflow.models import AuthenticatedUser
from signflow.pdf import PDFComposer

from fakes import FakeEmailSender, FakeStorage, InMemoryRepository, make_pdf


@pytest.fixture
def settings():
    """Settings with test values, ignoring any local .env file."""
    return Settings(
        _env_file=None,
        environment="test",
        gcs_bucket="test-bucket",
        sign_app_url="https://sign.example.com",
        admin_api_secret="test-admin-secret",
        oauth_client_id="test-client-id.apps.googleusercontent.com",
        resend_api_key="test_api_key",
    )


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def composer():
    return PDFComposer()


@pytest.fixture
def services(settings, repository, storage, email_sender, composer):
    return build_services(settings, repository, storage, email_sender, composer)


@pytest.fixture
def owner():
    return AuthenticatedUser(user_id="user-owner", email="owner@example.com", name="Owner")


@pytest.fixture
def other_user():
    return AuthenticatedUser(user_id="user-other", email="other@example.com", name="Other")


@pytest.fixture
def sample_pdf():
    """Two A4 pages."""
    return make_pdf(pages=2)


@pytest.fixture
def sample_png_bytes():
    """Minimal 1x1 PNG rendered by PyMuPDF."""
    pixmap = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 1, 1), False)
    pixmap.clear_with(0)
    return pixmap.tobytes("png")


@pytest.fixture
def sample_png_data_url(sample_png_bytes):
    return "data:image/png;base64," + base64.b64encode(sample_png_bytes).decode()
