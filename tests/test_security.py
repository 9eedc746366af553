from datetime import timedelta

import pytest

from filevault.core.security import (
    SEED_SIZE,
    InvalidTokenError,
    TokenKeys,
    derive_seed,
    hash_password,
    issue_token,
    make_password_context,
    verify_password,
    verify_token,
)


@pytest.fixture(scope="module")
def pwd_context():
    return make_password_context(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture(scope="module")
def keys():
    return TokenKeys.from_secret("unit-test-secret")


def test_seed_repeats_short_secret():
    seed = derive_seed(b"abc")
    assert len(seed) == SEED_SIZE
    assert seed[:6] == b"abcabc"
    assert seed == (b"abc" * 11)[:SEED_SIZE]


def test_seed_truncates_long_secret():
    secret = bytes(range(64))
    assert derive_seed(secret) == secret[:SEED_SIZE]


def test_empty_secret_is_rejected():
    with pytest.raises(ValueError):
        TokenKeys.from_secret("")


def test_keys_are_deterministic_per_secret():
    assert TokenKeys.from_secret("same") == TokenKeys.from_secret("same")
    assert TokenKeys.from_secret("same").public_pem != TokenKeys.from_secret("other").public_pem


def test_hash_is_salted_and_verifiable(pwd_context):
    first = hash_password(pwd_context, "s3cret!")
    second = hash_password(pwd_context, "s3cret!")

    assert first != second
    assert first.startswith("$argon2")
    assert verify_password(pwd_context, "s3cret!", first)
    assert verify_password(pwd_context, "s3cret!", second)
    assert not verify_password(pwd_context, "wrong", first)


def test_verify_uses_parameters_from_hash(pwd_context):
    stronger = make_password_context(time_cost=2, memory_cost=2048, parallelism=1)
    stored = hash_password(stronger, "s3cret!")
    assert verify_password(pwd_context, "s3cret!", stored)


def test_garbage_hash_does_not_verify(pwd_context):
    assert not verify_password(pwd_context, "s3cret!", "not-a-hash")


def test_token_round_trip(keys):
    token = issue_token(keys, "user-1", "alice")
    claims = verify_token(keys, token)
    assert claims.user_id == "user-1"
    assert claims.username == "alice"


def test_token_header_uses_asymmetric_algorithm(keys):
    from jose import jwt

    token = issue_token(keys, "user-1", "alice")
    assert jwt.get_unverified_header(token)["alg"] == "ES256"


def test_expired_token_is_rejected(keys):
    token = issue_token(keys, "user-1", "alice", expires_delta=timedelta(seconds=-10))
    with pytest.raises(InvalidTokenError):
        verify_token(keys, token)


def test_tampered_signature_is_rejected(keys):
    token = issue_token(keys, "user-1", "alice")
    header, payload, signature = token.split(".")
    # flip a character in the middle so decoded bytes change
    idx = len(signature) // 2
    swapped = "A" if signature[idx] != "A" else "B"
    forged = ".".join([header, payload, signature[:idx] + swapped + signature[idx + 1:]])

    with pytest.raises(InvalidTokenError):
        verify_token(keys, forged)


def test_token_from_other_secret_is_rejected(keys):
    token = issue_token(TokenKeys.from_secret("someone-else"), "user-1", "alice")
    with pytest.raises(InvalidTokenError):
        verify_token(keys, token)


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_malformed_token_is_rejected(keys, token):
    with pytest.raises(InvalidTokenError):
        verify_token(keys, token)
