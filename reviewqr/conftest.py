# reviewqr/conftest.py
import pytest

from reviewqr.core.config import settings
from reviewqr.core.database import create_all_tables, dispose_engine, init_engine
from reviewqr.features.ai.analysis import ReviewAnalyzer
from reviewqr.features.ai.service import AIEnhancer, set_enhancer
from reviewqr.features.ai.strategies import TemplateEnhancementStrategy

TEST_ADMIN_KEY = "test-admin-key"
TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings: no remote model, known admin key and JWT secret."""
    monkeypatch.setattr(settings, "ENV", "test")
    monkeypatch.setattr(settings, "GROQ_API_KEY", None)
    monkeypatch.setattr(settings, "ADMIN_KEY", TEST_ADMIN_KEY)
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "AUTH_JWT_ALGORITHMS", "HS256")
    monkeypatch.setattr(settings, "AUTH_ALLOW_HEADER_FALLBACK", True)
    monkeypatch.setattr(settings, "FRONTEND_URL", "https://reviews.example.com")
    yield settings


@pytest.fixture(autouse=True)
def database(tmp_path):
    """
    Fresh SQLite file database per test.

    A file (not :memory:) so that threads in concurrency tests share it.
    """
    engine = init_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_all_tables()
    yield engine
    dispose_engine()


@pytest.fixture(autouse=True)
def offline_enhancer():
    """Template strategy only; tests that need other behavior install their own."""
    enhancer = AIEnhancer(TemplateEnhancementStrategy(), ReviewAnalyzer())
    set_enhancer(enhancer)
    yield enhancer
    set_enhancer(None)


@pytest.fixture
def owner_id():
    return "owner-1"


@pytest.fixture
def business(owner_id):
    from reviewqr.features.businesses.service import create_business

    return create_business(owner_id, "Blue Door Cafe", business_type="Cafe", industry="Food & Drink")


@pytest.fixture
def customer(business):
    from reviewqr.features.businesses.service import create_customer

    return create_customer(business.id, "Dana", email="dana@example.com")


@pytest.fixture
def make_review(business, customer):
    """Submit a review for the default business/customer."""
    from reviewqr.features.reviews.service import submit_review

    def _make(feedback="The coffee was great and the staff were very friendly.", rating=5, **kwargs):
        return submit_review(business.id, customer.id, rating, feedback, **kwargs)

    return _make


@pytest.fixture
def client():
    """TestClient without lifespan, so the per-test engine stays in place."""
    from fastapi.testclient import TestClient
    from reviewqr.main import app

    return TestClient(app)


@pytest.fixture
def owner_headers(owner_id):
    return {"X-User-Id": owner_id}


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": TEST_ADMIN_KEY}
