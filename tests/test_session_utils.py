import pytest

from models import Principal
from session_utils import create_session_token, principal_from_token, verify_session_token

SECRET = "test-secret"


def test_token_round_trips_principal():
    principal = Principal(id=3, identity=" Lando@PitWall.test", wallet_address="wallet-lando", is_admin=False)

    restored = principal_from_token(create_session_token(principal, secret=SECRET), secret=SECRET)

    assert restored == Principal(id=3, identity="lando@pitwall.test", wallet_address="WALLET-LANDO", is_admin=False)


def test_tampered_token_is_rejected():
    token = create_session_token(Principal(1, "a@b.c", "W", True), secret=SECRET)

    with pytest.raises(ValueError):
        verify_session_token(token, secret="another-secret")
    with pytest.raises(ValueError):
        verify_session_token("garbage", secret=SECRET)


def test_expired_token_is_rejected():
    token = create_session_token(Principal(1, "a@b.c", "W", True), ttl_seconds=-10, secret=SECRET)

    with pytest.raises(ValueError, match="expired"):
        verify_session_token(token, secret=SECRET)
