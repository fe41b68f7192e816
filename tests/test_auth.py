import base64

import pytest

from apfsds.auth import (
    AuthError,
    AuthRequest,
    Authenticator,
    InvalidHmac,
    InvalidSignature,
    InvalidTimestamp,
    NonceReused,
    ReplayCache,
    TokenAlreadyUsed,
    TokenExpired,
    compute_hmac,
)
from apfsds.key_rotation import KeyManager

SERVER_SK = bytes([42] * 32)
HMAC_KEY = bytes([43] * 32)
NOW_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, value):
        self.value = value

    def __call__(self):
        return self.value


def create_auth(clock=None, ttl=60):
    if clock is None:
        return Authenticator(SERVER_SK, HMAC_KEY, ttl)
    return Authenticator(SERVER_SK, HMAC_KEY, ttl, clock=clock)


def make_request(base, timestamp=NOW_MS, nonce=b"n" * 32, key=HMAC_KEY):
    return AuthRequest(
        timestamp=timestamp,
        nonce=nonce,
        hmac_base=base,
        hmac_signature=compute_hmac(key, base, timestamp),
    )


def test_token_roundtrip():
    auth = create_auth()
    token = auth.generate_token(12345, bytes([1] * 32))
    assert auth.verify_and_consume_token(token) == 12345


def test_token_reuse():
    auth = create_auth()
    token = auth.generate_token(12345, bytes([1] * 32))
    assert auth.verify_and_consume_token(token) == 12345
    with pytest.raises(TokenAlreadyUsed):
        auth.verify_and_consume_token(token)


def test_public_key_matches_secret():
    assert create_auth().public_key() == KeyManager.with_secret(SERVER_SK).public_key()


def test_verify_accepts_valid_request():
    auth = create_auth(FakeClock(NOW_MS))
    assert auth.verify(make_request(b"7:123:abc")) == 7


def test_verify_rejects_drift():
    auth = create_auth(FakeClock(NOW_MS))
    with pytest.raises(InvalidTimestamp) as info:
        auth.verify(make_request(b"7:1:x", timestamp=NOW_MS - 60_000))
    assert info.value.drift == 60_000


def test_verify_rejects_reused_nonce():
    auth = create_auth(FakeClock(NOW_MS))
    assert auth.verify(make_request(b"7:1:x")) == 7
    with pytest.raises(NonceReused):
        auth.verify(make_request(b"7:1:x"))


def test_verify_rejects_bad_hmac():
    auth = create_auth(FakeClock(NOW_MS))
    request = make_request(b"7:1:x", key=bytes([1] * 32))
    with pytest.raises(InvalidHmac):
        auth.verify(request)


@pytest.mark.parametrize("base", [b"abc:1:2", b"-5:1:2", b"\xff\xfe:1"])
def test_verify_rejects_bad_user_id(base):
    auth = create_auth(FakeClock(NOW_MS))
    with pytest.raises(InvalidHmac):
        auth.verify(make_request(base))


def test_expired_token():
    clock = FakeClock(NOW_MS)
    auth = create_auth(clock, ttl=60)
    token = auth.generate_token(9, bytes([2] * 32))
    clock.value = NOW_MS + 60_001
    with pytest.raises(TokenExpired):
        auth.verify_and_consume_token(token)


def test_token_valid_at_exact_expiry():
    clock = FakeClock(NOW_MS)
    auth = create_auth(clock, ttl=60)
    token = auth.generate_token(9, bytes([2] * 32))
    clock.value = NOW_MS + 60_000
    assert auth.verify_and_consume_token(token) == 9


@pytest.mark.parametrize("token", [b"not base64!!", base64.b64encode(b"short")])
def test_malformed_token(token):
    with pytest.raises(InvalidSignature):
        create_auth().verify_and_consume_token(token)


def test_tampered_token():
    auth = create_auth()
    raw = bytearray(base64.b64decode(auth.generate_token(5, bytes([3] * 32))))
    raw[0] ^= 0xFF
    with pytest.raises(InvalidSignature):
        auth.verify_and_consume_token(base64.b64encode(bytes(raw)))


def test_token_from_other_server():
    other = Authenticator(bytes([7] * 32), HMAC_KEY, 60)
    token = other.generate_token(5, bytes([3] * 32))
    with pytest.raises(InvalidSignature):
        create_auth().verify_and_consume_token(token)


def test_errors_share_base_class():
    with pytest.raises(AuthError):
        create_auth().verify_and_consume_token(b"")


def test_generate_token_rejects_short_nonce():
    with pytest.raises(ValueError):
        create_auth().generate_token(1, b"short")


def test_replay_cache_expiry_and_cleanup():
    clock = FakeClock(0.0)
    cache = ReplayCache(10.0, clock=clock)
    assert cache.check_and_insert(b"k") is True
    assert cache.check_and_insert(b"k") is False
    clock.value = 10.0
    cache.cleanup()
    assert len(cache) == 0
    assert cache.check_and_insert(b"k") is True