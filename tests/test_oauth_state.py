try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from mailvault.core.errors import InvalidStateError
from mailvault.services.oauth_state import OAuthStateManager


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(clock: FakeClock) -> OAuthStateManager:
    return OAuthStateManager(secret_key="state-secret", ttl_seconds=600, clock=clock)


def test_state_is_valid_exactly_once(manager: OAuthStateManager) -> None:
    state = manager.generate_state(owner_id="user-1")

    assert manager.validate_state(state) is True
    assert manager.validate_state(state) is False
    assert manager.pending_count == 0


def test_consume_state_returns_bound_handshake(manager: OAuthStateManager) -> None:
    state = manager.generate_state(
        owner_id="user-1", redirect_to="https://app.example.com/settings"
    )

    handshake = manager.consume_state(state)

    assert handshake.owner_id == "user-1"
    assert handshake.redirect_to == "https://app.example.com/settings"
    assert handshake.token == state


def test_state_tokens_are_unique(manager: OAuthStateManager) -> None:
    states = {manager.generate_state(owner_id="user-1") for _ in range(50)}

    assert len(states) == 50
    assert manager.pending_count == 50


def test_state_expires_after_ttl(manager: OAuthStateManager, clock: FakeClock) -> None:
    state = manager.generate_state(owner_id="user-1")
    clock.advance(601)

    with pytest.raises(InvalidStateError):
        manager.consume_state(state)


def test_state_within_ttl_is_accepted(manager: OAuthStateManager, clock: FakeClock) -> None:
    state = manager.generate_state(owner_id="user-1")
    clock.advance(599)

    assert manager.validate_state(state) is True


def test_expired_states_are_pruned(manager: OAuthStateManager, clock: FakeClock) -> None:
    manager.generate_state(owner_id="user-1")
    clock.advance(601)

    manager.generate_state(owner_id="user-2")

    assert manager.pending_count == 1


def test_tampered_state_is_rejected(manager: OAuthStateManager) -> None:
    state = manager.generate_state(owner_id="user-1")
    nonce, issued_ms, signature = state.split(".")
    forged = f"{nonce}.{int(issued_ms) + 1000}.{signature}"

    with pytest.raises(InvalidStateError):
        manager.consume_state(forged)

    # The genuine token is still redeemable after a forged attempt.
    assert manager.validate_state(state) is True


def test_state_from_other_secret_is_rejected(clock: FakeClock) -> None:
    issuer = OAuthStateManager(secret_key="one-secret", clock=clock)
    verifier = OAuthStateManager(secret_key="another-secret", clock=clock)

    assert verifier.validate_state(issuer.generate_state(owner_id="user-1")) is False


def test_unknown_state_with_valid_signature_is_rejected(clock: FakeClock) -> None:
    issuer = OAuthStateManager(secret_key="shared", clock=clock)
    verifier = OAuthStateManager(secret_key="shared", clock=clock)

    assert verifier.validate_state(issuer.generate_state(owner_id="user-1")) is False


@pytest.mark.parametrize("token", ["", "garbage", "a.b", "a.notanumber.c", "a.b.c.d"])
def test_malformed_state_is_rejected(manager: OAuthStateManager, token: str) -> None:
    with pytest.raises(InvalidStateError):
        manager.consume_state(token)


def test_state_manager_requires_secret() -> None:
    with pytest.raises(ValueError):
        OAuthStateManager(secret_key="")
