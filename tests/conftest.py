from __future__ import annotations

import os

import pytest

from marketgate.adapters.memory_backend import InMemoryBackendService
from marketgate.config import Settings
from marketgate.domain.models import Role

SELLER_ID = "5f1a2b3c4d5e6f7a8b9c0d1e"
BUYER_ID = "6a1b2c3d4e5f6a7b8c9d0e1f"
OTHER_ID = "7b2c3d4e5f6a7b8c9d0e1f2a"
ADMIN_ID = "8c3d4e5f6a7b8c9d0e1f2a3b"
MODERATOR_ID = "9d4e5f6a7b8c9d0e1f2a3b4c"


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    settings_env_keys: set[str] = set()
    for field in Settings.model_fields.values():
        if isinstance(field.alias, str):
            settings_env_keys.add(field.alias)

    for key in list(os.environ):
        if key in settings_env_keys or key in {"HTTPX_LOG_LEVEL", "HTTPCORE_LOG_LEVEL"}:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


@pytest.fixture
def market() -> InMemoryBackendService:
    """Backend with one user per role and a product priced 50 with stock 10."""
    backend = InMemoryBackendService()
    backend.add_user(user_id=SELLER_ID, name="Sam Seller", email="sam@example.com", phone="555-0101")
    backend.add_user(user_id=BUYER_ID, name="Bea Buyer", email="bea@example.com", phone="555-0102")
    backend.add_user(user_id=OTHER_ID, name="Oli Other")
    backend.add_user(user_id=ADMIN_ID, role=Role.ADMIN, name="Ada Admin")
    backend.add_user(user_id=MODERATOR_ID, role=Role.MODERATOR, name="Mo Moderator")
    backend.add_product(
        product_id="a1b2c3d4e5f6a7b8c9d0e1f2",
        seller_id=SELLER_ID,
        name="Walnut desk",
        price=50,
        stock=10,
    )
    return backend
