import pytest

from utils.auth import hash_password, sign_token, verify_password, verify_token
from utils.errors import ValidationError
from utils.validation import numeric_id, parse_amount, parse_id


def test_password_hash_round_trip() -> None:
    stored = hash_password("secret")

    assert stored.startswith("pbkdf2_sha256$")
    assert verify_password(stored, "secret")
    assert not verify_password(stored, "Secret")
    assert not verify_password("not-a-hash", "secret")


def test_token_carries_identity() -> None:
    token = sign_token({"id": 7, "username": "tara", "role": "technician"})

    assert verify_token(token) == {"id": "7", "username": "tara", "role": "technician"}


def test_tampered_or_expired_token_is_rejected() -> None:
    token = sign_token({"id": 7, "username": "tara", "role": "admin"})

    assert verify_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB")) is None
    assert verify_token(token, max_age=-1) is None
    assert verify_token("") is None


def test_parse_id() -> None:
    assert parse_id("12") == 12
    assert parse_id(" 7 ") == 7
    assert parse_id(None, required=False) is None
    assert parse_id(str(2 ** 63 - 1)) == 2 ** 63 - 1
    for bad in ("12abc", "", "²", "-3", str(2 ** 63), 2 ** 63, True):
        with pytest.raises(ValidationError):
            parse_id(bad, "techId")


def test_numeric_id() -> None:
    assert numeric_id("42") == 42
    assert numeric_id("¹") is None
    assert numeric_id("99999999999999999999") is None
    assert numeric_id("walk-in") is None


def test_parse_amount() -> None:
    assert parse_amount("12.5") == 12.5
    assert parse_amount("abc") == 0
    assert parse_amount(float("nan")) == 0
