"""
Unit tests for payload and string encryption.
"""

import base64
from unittest.mock import patch

import pytest

from zkvault.core.exceptions import DecryptError, MissingKeyError, SerializationError, ValidationError
from zkvault.core.models import EncryptedData
from zkvault.security.encryption import decrypt_payload, decrypt_string, encrypt_payload, encrypt_string
from zkvault.security.keys import generate_vault_key


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def vault_key():
    return generate_vault_key()


@pytest.fixture
def payload():
    return {
        "username": "testuser@example.com",
        "password": "mySecretPassword123!",
        "url": "https://example.com",
        "notes": "Important account",
    }


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


# ==============================================================================
# Tests: Payload round-trip
# ==============================================================================

def test_encrypt_decrypt_payload(vault_key, payload):
    enc = encrypt_payload(vault_key, payload)

    assert isinstance(enc, EncryptedData)
    assert "testuser" not in enc.cipher_b64
    assert len(base64.b64decode(enc.iv_b64)) == 12
    assert decrypt_payload(vault_key, enc.cipher_b64, enc.iv_b64) == payload


@pytest.mark.parametrize(
    "value",
    [
        {},
        [],
        "plain",
        42,
        None,
        {"unicode": "🔒 ключ", "nested": {"tags": ["important", "work"], "n": 1.5}},
        {
            "password": "pass",
            "extras": [{"key": "question1", "value": "answer1"}, {"key": "q2", "value": "a2"}],
        },
    ],
)
def test_payload_roundtrip_shapes(vault_key, value):
    enc = encrypt_payload(vault_key, value)
    assert decrypt_payload(vault_key, enc.cipher_b64, enc.iv_b64) == value


def test_ciphertext_carries_128_bit_tag(vault_key):
    """Ciphertext length is the canonical JSON length plus a 16-byte tag."""
    enc = encrypt_payload(vault_key, {"b": 1, "a": 2})
    canonical = b'{"a":2,"b":1}'
    assert len(base64.b64decode(enc.cipher_b64)) == len(canonical) + 16


def test_same_payload_encrypts_differently(vault_key):
    first = encrypt_payload(vault_key, {"password": "same-password"})
    second = encrypt_payload(vault_key, {"password": "same-password"})
    assert first.iv_b64 != second.iv_b64
    assert first.cipher_b64 != second.cipher_b64


def test_every_call_draws_a_fresh_iv(vault_key):
    with patch("zkvault.security.encryption.random_bytes", wraps=lambda n: b"\x07" * n) as rnd:
        encrypt_payload(vault_key, {"a": 1})
        encrypt_string(vault_key, "x")
    assert [c.args for c in rnd.call_args_list] == [(12,), (12,)]


def test_unserializable_payload_raises(vault_key):
    with pytest.raises(SerializationError):
        encrypt_payload(vault_key, {"when": object()})
    with pytest.raises(SerializationError):
        encrypt_payload(vault_key, float("nan"))


@pytest.mark.parametrize(
    "value",
    [
        {1: "a"},
        {"pair": (1, 2)},
        (1, 2),
        [{"nested": {2: "b"}}],
        {True: "flag"},
    ],
)
def test_payload_that_would_not_decode_equal_is_rejected(vault_key, value):
    with pytest.raises(SerializationError):
        encrypt_payload(vault_key, value)


def test_circular_payload_is_rejected(vault_key):
    loop = []
    loop.append(loop)
    with pytest.raises(SerializationError):
        encrypt_payload(vault_key, loop)


# ==============================================================================
# Tests: Failure semantics
# ==============================================================================

def test_wrong_key_fails(vault_key, payload):
    enc = encrypt_payload(vault_key, payload)
    with pytest.raises(DecryptError, match="invalid key or corrupted data"):
        decrypt_payload(generate_vault_key(), enc.cipher_b64, enc.iv_b64)


def test_tampered_ciphertext_fails(vault_key, payload):
    enc = encrypt_payload(vault_key, payload)
    raw = bytearray(base64.b64decode(enc.cipher_b64))
    raw[0] ^= 0xFF
    with pytest.raises(DecryptError):
        decrypt_payload(vault_key, _b64(bytes(raw)), enc.iv_b64)


def test_failures_share_one_message(vault_key, payload):
    enc = encrypt_payload(vault_key, payload)
    other_iv = encrypt_payload(vault_key, payload).iv_b64

    messages = set()
    for cipher_b64, iv_b64, key in [
        (enc.cipher_b64, enc.iv_b64, generate_vault_key()),
        (enc.cipher_b64, other_iv, vault_key),
        ("@@@", enc.iv_b64, vault_key),
        (enc.cipher_b64, _b64(b"\x00" * 16), vault_key),
    ]:
        with pytest.raises(DecryptError) as exc_info:
            decrypt_payload(key, cipher_b64, iv_b64)
        messages.add(str(exc_info.value))
        assert exc_info.value.__cause__ is None
    assert len(messages) == 1


def test_authenticated_non_json_raises_serialization_error(vault_key):
    """Plaintext that authenticates but is not JSON is a logic error, not an attack."""
    enc = encrypt_string(vault_key, "definitely { not json")
    with pytest.raises(SerializationError):
        decrypt_payload(vault_key, enc.cipher_b64, enc.iv_b64)


def test_non_text_inputs_raise_decrypt_error(vault_key, payload):
    enc = encrypt_payload(vault_key, payload)
    with pytest.raises(DecryptError):
        decrypt_payload(vault_key, 12345, enc.iv_b64)
    with pytest.raises(DecryptError):
        decrypt_string(vault_key, enc.cipher_b64, 3.5)


def test_missing_inputs(vault_key):
    with pytest.raises(MissingKeyError):
        encrypt_payload(None, {})
    with pytest.raises(ValidationError):
        decrypt_payload(vault_key, "", "aXY=")
    with pytest.raises(ValidationError):
        decrypt_payload(vault_key, "Y3Q=", None)


# ==============================================================================
# Tests: Strings
# ==============================================================================

def test_encrypt_decrypt_string(vault_key):
    enc = encrypt_string(vault_key, "Hello, World!")
    assert decrypt_string(vault_key, enc.cipher_b64, enc.iv_b64) == "Hello, World!"


def test_string_has_no_json_layer(vault_key):
    enc = encrypt_string(vault_key, "abc")
    # 3 plaintext bytes, no quotes added
    assert len(base64.b64decode(enc.cipher_b64)) == 3 + 16


def test_decrypt_string_wrong_key(vault_key):
    enc = encrypt_string(vault_key, "secret message")
    with pytest.raises(DecryptError):
        decrypt_string(generate_vault_key(), enc.cipher_b64, enc.iv_b64)


def test_encrypt_string_rejects_non_text(vault_key):
    with pytest.raises(ValidationError):
        encrypt_string(vault_key, b"bytes")
