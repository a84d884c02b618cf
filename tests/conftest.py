"""
Pytest configuration and shared fixtures
"""

import pytest
from fastapi.testclient import TestClient

import src.config
from src.config import BackendConfig, PaymentConfig
from src.backend.server import app
from src.backend.dependencies import limiter, purchases_db
from src.ledger.resolver import EndpointResolver
from src.payments.state_machine import PaymentStateMachine

from tests.factories import FakeLedger, FakeRecorder, FakeWallet, PlanFactory, TREASURY_ADDRESS


@pytest.fixture
def payment_config() -> PaymentConfig:
    """Payment config with short timeouts and no network defaults"""
    return PaymentConfig(
        treasury_address=TREASURY_ADDRESS,
        rpc_endpoints=["https://rpc.test"],
        rpc_probe_timeout=0.5,
        confirmation_timeout=0.2,
        confirmation_poll_interval=0.01,
        fresh_balance_check=False,
    )


@pytest.fixture
def plan():
    return PlanFactory()


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def make_machine(plan, wallet, ledger, recorder, payment_config):
    """
    Build a PaymentStateMachine wired to the fake collaborators.

    The returned machine exposes `updates` (every StatusUpdate) and
    `completed` (intents passed to on_complete) for assertions.
    """
    def _make(**overrides) -> PaymentStateMachine:
        updates = []
        completed = []
        endpoints = overrides.pop("endpoints", [ledger])
        params = dict(
            plan=plan,
            wallet=wallet,
            resolver=EndpointResolver(endpoints, probe_timeout=payment_config.rpc_probe_timeout),
            recorder=recorder,
            config=payment_config,
            on_status=updates.append,
            on_complete=completed.append,
        )
        params.update(overrides)
        machine = PaymentStateMachine(**params)
        machine.updates = updates
        machine.completed = completed
        return machine

    return _make


@pytest.fixture
def client() -> TestClient:
    """Create FastAPI test client (sync)"""
    return TestClient(app)


@pytest.fixture(autouse=True)
def backend_settings(monkeypatch):
    """Backend config without verification delay or rate limiting"""
    monkeypatch.setattr(
        src.config,
        "_backend_config",
        BackendConfig(verify_transactions=False, processing_delay_seconds=0),
    )
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture(autouse=True)
def clear_purchases():
    """Clear recorded purchases before each test"""
    purchases_db.clear()
    yield
    purchases_db.clear()
    app.dependency_overrides.clear()
