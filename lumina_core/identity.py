"""
Seed phrase and identity management for Lumina.

An identity is derived from a 12-word seed phrase:

    phrase ──Mnemonic.to_seed──▶ 64-byte seed
           ──HMAC-SHA512("Lumina seed")──▶ secp256k1 private key
           ──▶ public key ──▶ "LMT…" address

Words are drawn independently and uniformly from the 2048-word English
dictionary shipped with the ``mnemonic`` package (no BIP-39 checksum word).
The phrase itself is only ever persisted encrypted: AES-256-GCM under a
key stretched from the user's password with PBKDF2-HMAC-SHA256.

Usage:
    identity, phrase = create_identity("correct horse", SecureRandom())
    assert decrypt_seed(identity, "correct horse") == phrase
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field, replace
from functools import lru_cache

from Crypto.Cipher import AES
from mnemonic import Mnemonic

from lumina_core.crypto_utils import (
    SecureRandom,
    derive_address,
    private_key_from_material,
    public_key_from_private,
)
from lumina_core.errors import (
    AuthenticationFailed,
    CorruptStateError,
    InvalidInput,
    InvalidSeedPhrase,
)

SEED_WORD_COUNT = 12
DICTIONARY_SIZE = 2048
DEFAULT_KDF_ITERATIONS = 600_000

_SEED_KEY = b"Lumina seed"
_SALT_BYTES = 16
_NONCE_BYTES = 12
_TAG_BYTES = 16
MIN_ENCRYPTED_SEED_BYTES = _NONCE_BYTES + _TAG_BYTES + 1


# ===================================================================
#  Dictionary
# ===================================================================

@lru_cache(maxsize=1)
def _dictionary() -> tuple[tuple[str, ...], frozenset[str]]:
    words = tuple(Mnemonic("english").wordlist)
    if len(words) != DICTIONARY_SIZE:
        raise RuntimeError(f"Seed dictionary has {len(words)} words, expected {DICTIONARY_SIZE}")
    return words, frozenset(words)


def get_wordlist() -> list[str]:
    return list(_dictionary()[0])


def is_dictionary_word(word: str) -> bool:
    return word in _dictionary()[1]


# ===================================================================
#  Seed phrases and key derivation
# ===================================================================

def generate_seed_phrase(rng: SecureRandom) -> str:
    """Draw 12 words uniformly at random.  ``InsufficientEntropy`` propagates."""
    words = get_wordlist()
    return " ".join(words[rng.randbelow(DICTIONARY_SIZE)] for _ in range(SEED_WORD_COUNT))


def normalize_seed_phrase(phrase: str) -> str:
    """Validate *phrase* and return it in canonical single-space lowercase form."""
    if not isinstance(phrase, str):
        raise InvalidSeedPhrase("Seed phrase must be a string")
    tokens = phrase.lower().split()
    if len(tokens) != SEED_WORD_COUNT:
        raise InvalidSeedPhrase(
            f"Seed phrase must contain exactly {SEED_WORD_COUNT} words, got {len(tokens)}"
        )
    unknown = [i + 1 for i, w in enumerate(tokens) if not is_dictionary_word(w)]
    if unknown:
        positions = ", ".join(str(p) for p in unknown)
        raise InvalidSeedPhrase(f"Unknown word at position(s) {positions}")
    return " ".join(tokens)


def derive_private_key(phrase: str) -> bytes:
    seed = Mnemonic.to_seed(phrase)
    material = hmac.new(_SEED_KEY, seed, hashlib.sha512).digest()
    return private_key_from_material(material[:32])


def derive_keys(phrase: str) -> tuple[bytes, bytes, str]:
    """Return ``(private_key, public_key, address)`` for a normalized phrase."""
    priv = derive_private_key(phrase)
    pub = public_key_from_private(priv)
    return priv, pub, derive_address(pub)


# ===================================================================
#  Seed encryption
# ===================================================================

@dataclass(frozen=True)
class KdfParams:
    """Password-stretching parameters stored next to the ciphertext."""
    salt: bytes
    iterations: int = DEFAULT_KDF_ITERATIONS
    algorithm: str = "pbkdf2-hmac-sha256"

    def derive(self, password: str) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), self.salt, self.iterations)

    def to_dict(self) -> dict:
        return {"algorithm": self.algorithm, "iterations": self.iterations, "salt": self.salt.hex()}

    @classmethod
    def from_dict(cls, data: dict) -> KdfParams:
        return cls(
            salt=bytes.fromhex(data["salt"]),
            iterations=int(data["iterations"]),
            algorithm=data.get("algorithm", "pbkdf2-hmac-sha256"),
        )


@dataclass(frozen=True)
class Identity:
    """
    The one identity of a wallet store.

    ``encrypted_seed`` is ``nonce || tag || ciphertext``.  Nothing here is
    secret on its own; the seed phrase needs the password.
    """
    address: str
    public_key: bytes
    encrypted_seed: bytes
    kdf_params: KdfParams
    created_at: float = field(default=0.0, compare=False)

    def reencrypt(self, old_password: str, new_password: str, rng: SecureRandom) -> Identity:
        """Return a copy encrypted under *new_password* with a fresh salt and nonce."""
        phrase = decrypt_seed(self, old_password)
        blob, params = encrypt_seed(phrase, new_password, rng, self.kdf_params.iterations)
        return replace(self, encrypted_seed=blob, kdf_params=params)

    def __repr__(self) -> str:
        return f"Identity({self.address})"


def _check_password(password: str) -> None:
    if not isinstance(password, str) or not password:
        raise InvalidInput("Password must be a non-empty string")


def encrypt_seed(
    phrase: str,
    password: str,
    rng: SecureRandom,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> tuple[bytes, KdfParams]:
    _check_password(password)
    params = KdfParams(salt=rng.token_bytes(_SALT_BYTES), iterations=iterations)
    key = params.derive(password)
    nonce = rng.token_bytes(_NONCE_BYTES)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    ciphertext, tag = cipher.encrypt_and_digest(phrase.encode("utf-8"))
    return nonce + tag + ciphertext, params


def decrypt_seed(identity: Identity, password: str) -> str:
    """Recover the phrase; ``AuthenticationFailed`` on a wrong password."""
    if not isinstance(password, str) or not password:
        raise AuthenticationFailed("Password required")
    blob = identity.encrypted_seed
    if len(blob) < MIN_ENCRYPTED_SEED_BYTES:
        raise CorruptStateError("Encrypted seed is truncated")
    nonce = blob[:_NONCE_BYTES]
    tag = blob[_NONCE_BYTES:_NONCE_BYTES + _TAG_BYTES]
    ciphertext = blob[_NONCE_BYTES + _TAG_BYTES:]
    key = identity.kdf_params.derive(password)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    try:
        plain = cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError:
        raise AuthenticationFailed("Wrong password") from None
    return plain.decode("utf-8")


# ===================================================================
#  Factories
# ===================================================================

def recover_identity(
    phrase: str,
    password: str,
    rng: SecureRandom,
    iterations: int = DEFAULT_KDF_ITERATIONS,
    created_at: float = 0.0,
) -> tuple[Identity, str]:
    """Rebuild the identity for *phrase*.  Returns ``(identity, normalized phrase)``."""
    phrase = normalize_seed_phrase(phrase)
    _check_password(password)
    _, pub, address = derive_keys(phrase)
    blob, params = encrypt_seed(phrase, password, rng, iterations)
    return Identity(address, pub, blob, params, created_at), phrase


def create_identity(
    password: str,
    rng: SecureRandom,
    iterations: int = DEFAULT_KDF_ITERATIONS,
    created_at: float = 0.0,
) -> tuple[Identity, str]:
    _check_password(password)
    phrase = generate_seed_phrase(rng)
    return recover_identity(phrase, password, rng, iterations, created_at)
