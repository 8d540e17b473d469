"""Shared test fixtures."""

import dataclasses

import pytest

from relay.config import Config
from relay.tenants import TenantProfile
from tests.fakes import FakeTelephonySocket, GeminiFactory


@pytest.fixture
def tenant() -> TenantProfile:
    return TenantProfile(
        key="acme",
        name="Acme Plumbing",
        api_key="test-key",
        system_prompt="You answer the phone for Acme Plumbing. Be brief.",
        voice="Puck",
    )


@pytest.fixture
def greeting_tenant(tenant: TenantProfile) -> TenantProfile:
    return dataclasses.replace(tenant, greeting="Say hello to the caller.")


@pytest.fixture
def cfg() -> Config:
    return dataclasses.replace(
        Config(),
        WS_PATH="/stream",
        HEALTH_PATH="/health",
        DEFAULT_TENANT="acme",
        GEMINI_WS_URL="wss://gemini.test/ws",
        GEMINI_MODEL="gemini-test",
        AI_CONNECT_TIMEOUT=0.0,
        TELEPHONY_SR=8000,
        GEMINI_INPUT_SR=16000,
        GEMINI_OUTPUT_SR=24000,
        RESAMPLE_MODE="naive",
    )


@pytest.fixture
def telephony() -> FakeTelephonySocket:
    return FakeTelephonySocket()


@pytest.fixture
def gemini_factory() -> GeminiFactory:
    return GeminiFactory()
