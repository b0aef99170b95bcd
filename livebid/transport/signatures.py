"""Signature utilities based on Ed25519 public key cryptography."""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


class SignatureError(ValueError):
    """Raised when a signature or key is invalid or malformed."""


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(value + padding)
    except (binascii.Error, ValueError) as exc:
        raise SignatureError("value is not base64url") from exc


def load_public_key(pem: str) -> Ed25519PublicKey:
    if not pem:
        raise SignatureError("public key missing")
    try:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    except ValueError as exc:
        raise SignatureError("public key is not a valid PEM") from exc
    if not isinstance(key, Ed25519PublicKey):
        raise SignatureError("public key is not ed25519")
    return key


def load_private_key(pem: str) -> Ed25519PrivateKey:
    if not pem:
        raise SignatureError("private key missing")
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except ValueError as exc:
        raise SignatureError("private key is not a valid PEM") from exc
    if not isinstance(key, Ed25519PrivateKey):
        raise SignatureError("private key is not ed25519")
    return key


def verify_signature(message: bytes, signature_b64: str, public_key: Ed25519PublicKey) -> None:
    """Validate a base64url ed25519 signature over ``message``."""
    if not signature_b64:
        raise SignatureError("signature missing")
    signature = b64url_decode(signature_b64)
    try:
        public_key.verify(signature, message)
    except InvalidSignature as exc:
        raise SignatureError("signature verification failed") from exc


def sign_message(message: bytes, private_key_pem: str) -> str:
    private_key = load_private_key(private_key_pem)
    return b64url_encode(private_key.sign(message))
