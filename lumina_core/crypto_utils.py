"""
Cryptographic utilities for Lumina.

  - SHA-256 / double SHA-256 / Hash160 (SHA-256 then RIPEMD-160)
  - Base58 and Base58Check encoding (Bitcoin alphabet)
  - secp256k1 key handling and deterministic ECDSA (RFC 6979) via ``ecdsa``
  - Address derivation: ``"LMT"`` + Base58Check(version || Hash160(pubkey))
  - :class:`SecureRandom`, the only source of randomness in the wallet
"""

from __future__ import annotations

import hashlib
import os
import secrets

from Crypto.Hash import RIPEMD160
from ecdsa import BadSignatureError, SECP256k1, SigningKey, VerifyingKey
from ecdsa.util import MalformedSignature, sigdecode_string, sigencode_string

from lumina_core.errors import InsufficientEntropy

ADDRESS_PREFIX = "LMT"
ADDRESS_VERSION = b"\x30"

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(_B58_ALPHABET)}


# ===================================================================
#  Hashing
# ===================================================================

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    return sha256(sha256(data))


def hash160(data: bytes) -> bytes:
    """RIPEMD-160(SHA-256(data)); RIPEMD comes from pycryptodome because
    OpenSSL 3 builds of hashlib no longer ship it."""
    h = RIPEMD160.new()
    h.update(sha256(data))
    return h.digest()


# ===================================================================
#  Base58
# ===================================================================

def base58_encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out = []
    while n > 0:
        n, rem = divmod(n, 58)
        out.append(_B58_ALPHABET[rem])
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + "".join(reversed(out))


def base58_decode(text: str) -> bytes:
    n = 0
    for ch in text:
        if ch not in _B58_INDEX:
            raise ValueError(f"Invalid base58 character {ch!r}")
        n = n * 58 + _B58_INDEX[ch]
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(text) - len(text.lstrip("1"))
    return b"\x00" * pad + body


def base58check_encode(payload: bytes) -> str:
    return base58_encode(payload + sha256d(payload)[:4])


def base58check_decode(text: str) -> bytes:
    raw = base58_decode(text)
    if len(raw) < 5:
        raise ValueError("Base58Check payload too short")
    payload, checksum = raw[:-4], raw[-4:]
    if sha256d(payload)[:4] != checksum:
        raise ValueError("Base58Check checksum mismatch")
    return payload


def is_base58(text: str) -> bool:
    return bool(text) and all(ch in _B58_INDEX for ch in text)


# ===================================================================
#  Keys, signatures, addresses
# ===================================================================

def private_key_from_material(material: bytes) -> bytes:
    """Reduce 32+ bytes of key material to a valid secp256k1 scalar."""
    k = int.from_bytes(material[:32], "big") % SECP256k1.order
    if k == 0:
        raise ValueError("Derived private key is zero")
    return k.to_bytes(32, "big")


def public_key_from_private(private_key: bytes) -> bytes:
    """Uncompressed 65-byte public key (``04 || X || Y``)."""
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return b"\x04" + sk.get_verifying_key().to_string()


def sign(private_key: bytes, message: bytes) -> bytes:
    """Deterministic ECDSA-SHA256 signature, 64 raw bytes (r || s)."""
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return sk.sign_deterministic(message, hashfunc=hashlib.sha256, sigencode=sigencode_string)


def verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    try:
        raw = public_key[1:] if len(public_key) == 65 else public_key
        vk = VerifyingKey.from_string(raw, curve=SECP256k1)
        return vk.verify(signature, message, hashfunc=hashlib.sha256, sigdecode=sigdecode_string)
    except (BadSignatureError, MalformedSignature, ValueError, AssertionError):
        return False


def derive_address(public_key: bytes) -> str:
    return ADDRESS_PREFIX + base58check_encode(ADDRESS_VERSION + hash160(public_key))


def is_valid_wallet_address(address: str) -> bool:
    """True for a checksummed ``LMT…`` address."""
    if not address.startswith(ADDRESS_PREFIX):
        return False
    try:
        payload = base58check_decode(address[len(ADDRESS_PREFIX):])
    except ValueError:
        return False
    return len(payload) == 21 and payload[:1] == ADDRESS_VERSION


# ===================================================================
#  Secure randomness
# ===================================================================

class SecureRandom:
    """
    Cryptographically secure random source backed by the OS CSPRNG.

    Injected into every component that needs randomness (seed words,
    salts, nonces) so tests can substitute a deterministic source and so
    there is never an implicit global PRNG.
    """

    def token_bytes(self, n: int) -> bytes:
        try:
            return os.urandom(n)
        except NotImplementedError as exc:
            raise InsufficientEntropy("No secure random source available") from exc

    def randbelow(self, n: int) -> int:
        try:
            return secrets.randbelow(n)
        except NotImplementedError as exc:
            raise InsufficientEntropy("No secure random source available") from exc
