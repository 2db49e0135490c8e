"""Shared fixtures. Environment defaults are set before any app module reads Settings."""

import os

os.environ.setdefault("VAULT_PROVIDER", "direct")
os.environ.setdefault("VAULT_MASTER_KEY", "test-master-key-do-not-use-in-production")
os.environ.setdefault("CREDENTIALS_ENCRYPTION_KEY", "test-credentials-key")
os.environ.setdefault("TRANSPORT_ENDPOINTS_JSON", "[]")
os.environ.setdefault("TRANSPORT_HEALTH_CHECKS_ENABLED", "false")

import pytest

from app.config import Settings


@pytest.fixture
def settings() -> Settings:
    # Tiny backoff values keep retry tests near-instant while still exercising the sleep path.
    return Settings(
        VAULT_MASTER_KEY="test-master-key-do-not-use-in-production",
        BACKOFF_BASE_SECONDS=0.001,
        BACKOFF_MAX_SECONDS=0.001,
        PSP_TIMEOUT_SECONDS=2.0,
        TRANSPORT_TIMEOUT_SECONDS=1.0,
    )
