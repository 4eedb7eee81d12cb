"""
auth/passwords.py -- Salted password hashing with a self-describing method tag.

Security design decisions:
  Hashing: bcrypt directly (no passlib wrapper). Each user gets a fresh salt
       from bcrypt.gensalt(); the salt is stored in its own column next to the
       hash and a method tag ("bcrypt"), so the verifier is chosen from the
       stored row rather than from whatever the code defaults to today.

  Verification: bcrypt.checkpw() does the comparison -- never a naive string
       equality. The stored hash must start with the stored salt; a mismatch
       means the row was tampered with or mis-imported and raises
       InvalidPasswordSalt instead of silently failing.

  Legacy: "pbkdf2_sha256" rows imported from an older deployment keep their
       PHC string ($pbkdf2-sha256$i=600000,l=32$<salt>$<hash>, unpadded
       base64) as password_hash and can still be verified. New hashes are
       always bcrypt.

  Timing: dummy_verify() burns one bcrypt check against a throwaway hash so a
       login for an unknown username costs the same as a wrong password.

bcrypt only looks at the first 72 bytes of input. Passwords longer than that
are rejected at hash time and never match at verify time.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from functools import lru_cache

import bcrypt

from auth.errors import InvalidCredential, InvalidPasswordSalt, UnsupportedHashMethod

METHOD_BCRYPT = "bcrypt"
METHOD_PBKDF2_SHA256 = "pbkdf2_sha256"
PBKDF2_PHC_ID = "pbkdf2-sha256"

SUPPORTED_METHODS = frozenset({METHOD_BCRYPT, METHOD_PBKDF2_SHA256})

BCRYPT_MAX_BYTES = 72
DEFAULT_ROUNDS = 12


@dataclass(frozen=True)
class HashedPassword:
    """The three columns that together describe one stored password."""

    password_hash: str
    password_salt: str
    password_method: str


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> HashedPassword:
    """Hash a plaintext password with a fresh bcrypt salt."""
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise InvalidCredential(f"password must be at most {BCRYPT_MAX_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=rounds)
    digest = bcrypt.hashpw(encoded, salt)
    return HashedPassword(
        password_hash=digest.decode("ascii"),
        password_salt=salt.decode("ascii"),
        password_method=METHOD_BCRYPT,
    )


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text + "=" * (-len(text) % 4), validate=True)


def hash_pbkdf2(plain: str, salt: bytes, iterations: int = 600_000) -> HashedPassword:
    """Produce a pbkdf2_sha256 record in PHC form. Only used to seed legacy rows and tests."""
    digest = hashlib.pbkdf2_hmac("sha256", plain.encode("utf-8"), salt, iterations)
    salt_b64 = _b64encode(salt)
    return HashedPassword(
        password_hash=f"${PBKDF2_PHC_ID}$i={iterations},l={len(digest)}${salt_b64}${_b64encode(digest)}",
        password_salt=salt_b64,
        password_method=METHOD_PBKDF2_SHA256,
    )


def from_phc(phc: str) -> HashedPassword:
    """Wrap an exported PHC string as a stored record.

    Raises UnsupportedHashMethod for anything other than $pbkdf2-sha256$ and
    InvalidPasswordSalt if the string does not parse.
    """
    algorithm = phc.split("$")[1] if phc.startswith("$") and phc.count("$") >= 2 else ""
    if algorithm != PBKDF2_PHC_ID:
        raise UnsupportedHashMethod(algorithm or phc[:16])
    _iterations, salt_b64, _expected = _parse_phc(phc)
    return HashedPassword(password_hash=phc, password_salt=salt_b64, password_method=METHOD_PBKDF2_SHA256)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def check_method(method: str) -> None:
    if method not in SUPPORTED_METHODS:
        raise UnsupportedHashMethod(method)


def verify_password(plain: str, stored: HashedPassword) -> bool:
    """Return True if plain matches the stored record.

    Raises UnsupportedHashMethod for an unknown method tag and
    InvalidPasswordSalt when the stored salt or hash cannot be decoded.
    """
    check_method(stored.password_method)
    if stored.password_method == METHOD_BCRYPT:
        return _verify_bcrypt(plain, stored)
    return _verify_pbkdf2(plain, stored)


def _verify_bcrypt(plain: str, stored: HashedPassword) -> bool:
    if not stored.password_salt or not stored.password_hash.startswith(stored.password_salt):
        raise InvalidPasswordSalt("bcrypt hash does not match its stored salt")
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, stored.password_hash.encode("ascii"))
    except ValueError as exc:
        raise InvalidPasswordSalt(f"malformed bcrypt hash: {exc}") from exc


def _parse_phc(phc: str) -> tuple[int, str, bytes]:
    """Split $pbkdf2-sha256$i=N[,l=N]$salt$hash into (iterations, salt_b64, digest)."""
    parts = phc.split("$")
    if len(parts) != 5 or parts[0] or parts[1] != PBKDF2_PHC_ID:
        raise InvalidPasswordSalt("malformed pbkdf2 PHC string")
    params = dict(p.partition("=")[::2] for p in parts[2].split(","))
    iterations = params.get("i", "")
    if not iterations.isdigit() or int(iterations) < 1:
        raise InvalidPasswordSalt("pbkdf2 PHC string has no valid iteration count")
    try:
        _b64decode(parts[3])
        expected = _b64decode(parts[4])
    except (binascii.Error, ValueError) as exc:
        raise InvalidPasswordSalt("pbkdf2 salt or hash is not valid base64") from exc
    length = params.get("l", str(len(expected)))
    if not length.isdigit() or int(length) != len(expected):
        raise InvalidPasswordSalt("pbkdf2 output length does not match its hash")
    return int(iterations), parts[3], expected


def _verify_pbkdf2(plain: str, stored: HashedPassword) -> bool:
    iterations, salt_b64, expected = _parse_phc(stored.password_hash)
    if stored.password_salt and stored.password_salt != salt_b64:
        raise InvalidPasswordSalt("pbkdf2 hash does not match its stored salt")
    digest = hashlib.pbkdf2_hmac("sha256", plain.encode("utf-8"), _b64decode(salt_b64), iterations, len(expected))
    return hmac.compare_digest(digest, expected)


# ---------------------------------------------------------------------------
# Timing equalization
# ---------------------------------------------------------------------------


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> bytes:
    return bcrypt.hashpw(b"enigma_timing_dummy", bcrypt.gensalt(rounds=rounds))


def dummy_verify(plain: str, rounds: int = DEFAULT_ROUNDS) -> None:
    """Spend one bcrypt check so an unknown username is not faster to reject."""
    bcrypt.checkpw(plain.encode("utf-8")[:BCRYPT_MAX_BYTES], _dummy_hash(rounds))
