"""
Test suite for lumina_core.crypto_utils.

Covers:
  - SHA-256 / double-SHA-256 / Hash160
  - Base58 and Base58Check encode / decode
  - Key derivation, deterministic ECDSA signing and verification
  - Address derivation and validation
  - SecureRandom
"""

import hashlib
import unittest
from unittest.mock import patch

from lumina_core.crypto_utils import (
    ADDRESS_PREFIX,
    SecureRandom,
    base58_decode,
    base58_encode,
    base58check_decode,
    base58check_encode,
    derive_address,
    hash160,
    is_base58,
    is_valid_wallet_address,
    private_key_from_material,
    public_key_from_private,
    sha256,
    sha256d,
    sign,
    verify,
)
from lumina_core.errors import InsufficientEntropy

PRIV = private_key_from_material(sha256(b"test key"))
PUB = public_key_from_private(PRIV)


class TestHashFunctions(unittest.TestCase):

    def test_sha256_matches_hashlib(self):
        self.assertEqual(sha256(b"abc"), hashlib.sha256(b"abc").digest())

    def test_sha256d(self):
        self.assertEqual(sha256d(b"abc"), sha256(sha256(b"abc")))

    def test_hash160_length(self):
        self.assertEqual(len(hash160(b"abc")), 20)

    def test_hash160_known_vector(self):
        # RIPEMD160(SHA256("")) from the Bitcoin test vectors
        self.assertEqual(hash160(b"").hex(), "b472a266d0bd89c13706a4132ccfb16f7c3b9fcb")


class TestBase58(unittest.TestCase):

    def test_leading_zeros_preserved(self):
        data = b"\x00\x00\x01\x02"
        encoded = base58_encode(data)
        self.assertTrue(encoded.startswith("11"))
        self.assertEqual(base58_decode(encoded), data)

    def test_known_vector(self):
        self.assertEqual(base58_encode(b"hello world"), "StV1DL6CwTryKyV")

    def test_invalid_character(self):
        with self.assertRaises(ValueError):
            base58_decode("0OIl")

    def test_check_detects_corruption(self):
        encoded = base58check_encode(b"\x30payload")
        self.assertEqual(base58check_decode(encoded), b"\x30payload")
        flipped = ("2" if encoded[-1] != "2" else "3")
        with self.assertRaises(ValueError):
            base58check_decode(encoded[:-1] + flipped)

    def test_is_base58(self):
        self.assertTrue(is_base58("abc123"))
        self.assertFalse(is_base58("abc0"))
        self.assertFalse(is_base58(""))


class TestSigning(unittest.TestCase):

    def test_public_key_uncompressed(self):
        self.assertEqual(len(PUB), 65)
        self.assertEqual(PUB[0], 4)

    def test_sign_is_deterministic(self):
        self.assertEqual(sign(PRIV, b"msg"), sign(PRIV, b"msg"))
        self.assertEqual(len(sign(PRIV, b"msg")), 64)

    def test_verify_roundtrip(self):
        sig = sign(PRIV, b"msg")
        self.assertTrue(verify(PUB, b"msg", sig))

    def test_verify_rejects_other_message(self):
        sig = sign(PRIV, b"msg")
        self.assertFalse(verify(PUB, b"other", sig))

    def test_verify_rejects_garbage_signature(self):
        self.assertFalse(verify(PUB, b"msg", b"\x01" * 10))

    def test_verify_rejects_garbage_key(self):
        self.assertFalse(verify(b"\x04" + b"\x00" * 64, b"msg", sign(PRIV, b"msg")))

    def test_material_reduced_mod_order(self):
        key = private_key_from_material(b"\xff" * 32)
        self.assertEqual(len(key), 32)

    def test_zero_material_rejected(self):
        with self.assertRaises(ValueError):
            private_key_from_material(b"\x00" * 32)


class TestAddresses(unittest.TestCase):

    def test_prefix(self):
        self.assertTrue(derive_address(PUB).startswith(ADDRESS_PREFIX))

    def test_derived_address_valid(self):
        self.assertTrue(is_valid_wallet_address(derive_address(PUB)))

    def test_corrupted_address_invalid(self):
        addr = derive_address(PUB)
        last = "2" if addr[-1] != "2" else "3"
        self.assertFalse(is_valid_wallet_address(addr[:-1] + last))

    def test_foreign_address_not_wallet_address(self):
        self.assertFalse(is_valid_wallet_address("rSomethingElse"))


class TestSecureRandom(unittest.TestCase):

    def test_token_bytes_length(self):
        self.assertEqual(len(SecureRandom().token_bytes(16)), 16)

    def test_randbelow_range(self):
        rng = SecureRandom()
        for _ in range(100):
            self.assertTrue(0 <= rng.randbelow(2048) < 2048)

    @patch("lumina_core.crypto_utils.os.urandom", side_effect=NotImplementedError)
    def test_token_bytes_without_os_source(self, _urandom):
        with self.assertRaises(InsufficientEntropy):
            SecureRandom().token_bytes(16)

    @patch("lumina_core.crypto_utils.secrets.randbelow", side_effect=NotImplementedError)
    def test_randbelow_without_os_source(self, _randbelow):
        with self.assertRaises(InsufficientEntropy):
            SecureRandom().randbelow(2048)


if __name__ == "__main__":
    unittest.main()
