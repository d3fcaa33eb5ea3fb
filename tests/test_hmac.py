import hashlib
import hmac

import pytest

from otpus.security.hmac import (
    canonical_domain,
    domain_subject,
    sign,
    sign_domain_token,
    verify,
    verify_domain_token,
)

SECRET = "s3cret"


def test_sign_matches_reference_hmac_for_domain_subject():
    """Тест: токен домена = hex HMAC-SHA256 от "domain:chat_id"."""
    expected = hmac.new(b"s3cret", b"tenant.example.com:555", hashlib.sha256).hexdigest()

    assert sign("tenant.example.com:555", SECRET) == expected
    assert sign_domain_token("tenant.example.com", "555", SECRET) == expected
    assert sign_domain_token("https://tenant.example.com/", 555, SECRET) == expected


def test_sign_is_lowercase_hex_of_sha256_length():
    token = sign("42", SECRET)

    assert len(token) == 64
    assert token == token.lower()
    int(token, 16)


def test_verify_accepts_own_signature():
    token = sign("123456", SECRET)

    assert verify("123456", token, SECRET) is True


def test_verify_rejects_wrong_secret_and_subject():
    token = sign("123456", SECRET)

    assert verify("123456", token, "other") is False
    assert verify("1234567", token, SECRET) is False


@pytest.mark.parametrize("position", [0, 17, 63])
def test_verify_rejects_single_bit_flip(position):
    """Тест: любой изменённый символ подписи ломает проверку."""
    token = sign("tenant.example.com:555", SECRET)
    flipped = format(int(token[position], 16) ^ 1, "x")
    corrupted = token[:position] + flipped + token[position + 1 :]

    assert corrupted != token
    assert verify("tenant.example.com:555", corrupted, SECRET) is False


@pytest.mark.parametrize("token", ["", None, "not-hex", "ü" * 64])
def test_verify_malformed_token_is_false_not_error(token):
    assert verify("555", token, SECRET) is False


@pytest.mark.parametrize(
    "raw",
    [
        "tenant.example.com",
        "https://tenant.example.com",
        "http://tenant.example.com/",
        "  HTTPS://tenant.example.com//  ",
        "https://https://tenant.example.com/",
    ],
)
def test_canonical_domain_equivalent_forms(raw):
    assert canonical_domain(raw) == "tenant.example.com"


@pytest.mark.parametrize("raw", ["tenant.example.com/", " https://x.y/ /", "http://", "", "a.b.c:8443"])
def test_canonical_domain_is_idempotent(raw):
    once = canonical_domain(raw)

    assert canonical_domain(once) == once


def test_domain_subject_uses_canonical_domain():
    assert domain_subject("https://tenant.example.com/", 555) == "tenant.example.com:555"


def test_verify_domain_token_across_formatting():
    token = sign_domain_token("tenant.example.com", 555, SECRET)

    assert verify_domain_token("https://tenant.example.com/", "555", token, SECRET) is True
    assert verify_domain_token("tenant.example.com", "556", token, SECRET) is False
    assert verify_domain_token("other.example.com", "555", token, SECRET) is False


@pytest.mark.parametrize("domain,chat_id", [("", "555"), ("tenant.example.com", ""), ("tenant.example.com", None)])
def test_verify_domain_token_missing_parts(domain, chat_id):
    token = sign_domain_token("tenant.example.com", 555, SECRET)

    assert verify_domain_token(domain, chat_id, token, SECRET) is False
