"""secp256k1 keys and Ethereum personal-message signatures."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass

from Crypto.Hash import keccak

_P = 2**256 - 2**32 - 977
_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_G = (
    0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
)

_Point = tuple[int, int] | None


class SignatureError(ValueError):
    """Raised for malformed keys or signatures and failed verification."""


def _keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def _on_curve(x: int, y: int) -> bool:
    return (y * y - x * x * x - 7) % _P == 0


def _add(a: _Point, b: _Point) -> _Point:
    if a is None:
        return b
    if b is None:
        return a
    if a[0] == b[0]:
        if (a[1] + b[1]) % _P == 0:
            return None
        lam = 3 * a[0] * a[0] * pow(2 * a[1], -1, _P)
    else:
        lam = (b[1] - a[1]) * pow(b[0] - a[0], -1, _P)
    lam %= _P
    x = (lam * lam - a[0] - b[0]) % _P
    return x, (lam * (a[0] - x) - a[1]) % _P


def _mul(k: int, point: _Point) -> _Point:
    result: _Point = None
    while k:
        if k & 1:
            result = _add(result, point)
        point = _add(point, point)
        k >>= 1
    return result


@dataclass(frozen=True)
class PublicKey:
    x: int
    y: int

    def compressed(self) -> bytes:
        return bytes([2 + (self.y & 1)]) + self.x.to_bytes(32, "big")

    def uncompressed(self) -> bytes:
        return b"\x04" + self.x.to_bytes(32, "big") + self.y.to_bytes(32, "big")

    def to_address(self) -> str:
        """Checksummed Ethereum address of this key."""
        plain = _keccak256(self.uncompressed()[1:])[-20:].hex()
        digest = _keccak256(plain.encode()).hex()
        return "0x" + "".join(
            c.upper() if int(h, 16) >= 8 else c for c, h in zip(plain, digest)
        )


@dataclass(frozen=True)
class PrivateKey:
    secret: int

    def __post_init__(self):
        if not 1 <= self.secret < _N:
            raise SignatureError("private key out of range")

    @property
    def public_key(self) -> PublicKey:
        point = _mul(self.secret, _G)
        assert point is not None
        return PublicKey(*point)


def personal_hash(data: bytes) -> bytes:
    """Keccak-256 of ``data`` wrapped in the Ethereum signed-message prefix."""
    prefix = f"\x19Ethereum Signed Message:\n{len(data)}".encode()
    return _keccak256(prefix + data)


def generate_keypair() -> tuple[PublicKey, PrivateKey]:
    private_key = PrivateKey(secrets.randbelow(_N - 1) + 1)
    return private_key.public_key, private_key


def private_key_from_hex(text: str) -> PrivateKey:
    """Parse a 32-byte hex private key (without ``0x``)."""
    try:
        raw = bytes.fromhex(text)
    except ValueError as exc:
        raise SignatureError(f"invalid hex private key: {exc}") from None
    if len(raw) != 32:
        raise SignatureError("private key must be 32 bytes")
    return PrivateKey(int.from_bytes(raw, "big"))


def _nonces(secret: int, digest: bytes):
    x = secret.to_bytes(32, "big")
    h = (int.from_bytes(digest, "big") % _N).to_bytes(32, "big")
    v = b"\x01" * 32
    k = b"\x00" * 32
    k = hmac.new(k, v + b"\x00" + x + h, hashlib.sha256).digest()
    v = hmac.new(k, v, hashlib.sha256).digest()
    k = hmac.new(k, v + b"\x01" + x + h, hashlib.sha256).digest()
    v = hmac.new(k, v, hashlib.sha256).digest()
    while True:
        v = hmac.new(k, v, hashlib.sha256).digest()
        candidate = int.from_bytes(v, "big")
        if 1 <= candidate < _N:
            yield candidate
        k = hmac.new(k, v + b"\x00", hashlib.sha256).digest()
        v = hmac.new(k, v, hashlib.sha256).digest()


def sign_personal(payload: bytes | str, private_key: PrivateKey) -> bytes:
    """Sign ``payload`` as a personal message; returns r || s || v (v is 0 or 1)."""
    if isinstance(payload, str):
        payload = payload.encode()
    digest = personal_hash(payload)
    e = int.from_bytes(digest, "big")
    for k in _nonces(private_key.secret, digest):
        point = _mul(k, _G)
        assert point is not None
        r = point[0] % _N
        if r == 0:
            continue
        s = pow(k, -1, _N) * (e + r * private_key.secret) % _N
        if s == 0:
            continue
        recovery = (point[1] & 1) | (2 if point[0] >= _N else 0)
        if s > _N // 2:
            s = _N - s
            recovery ^= 1
        return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([recovery])
    raise SignatureError("unable to sign")  # pragma: no cover


def recover_pubkey_from_personal_signature(payload: str | bytes, signature: bytes) -> PublicKey:
    """Recover the signer's public key from a personal-message signature."""
    if len(signature) != 65:
        raise SignatureError(
            f"Signature length invalid: {len(signature)} instead of 65"
        )
    recovery = signature[64]
    if recovery in (27, 28):
        recovery -= 27
    if recovery not in (0, 1):
        raise SignatureError(f"Signature Recovery ID not supported: {recovery}")

    if isinstance(payload, str):
        payload = payload.encode()
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    if not (1 <= r < _N and 1 <= s < _N):
        raise SignatureError("signature values out of range")

    alpha = (r * r * r + 7) % _P
    beta = pow(alpha, (_P + 1) // 4, _P)
    if beta * beta % _P != alpha:
        raise SignatureError("invalid signature: no curve point for r")
    y = beta if beta % 2 == recovery else _P - beta

    e = int.from_bytes(personal_hash(payload), "big")
    r_inv = pow(r, -1, _N)
    point = _add(_mul(s * r_inv % _N, (r, y)), _mul((-e * r_inv) % _N, _G))
    if point is None:
        raise SignatureError("invalid signature: recovered point at infinity")
    return PublicKey(*point)


def validate_personal_signature(payload: str | bytes, signature: bytes, pubkey: PublicKey) -> None:
    """Raise SignatureError unless ``signature`` over ``payload`` was made by ``pubkey``."""
    recovered = recover_pubkey_from_personal_signature(payload, signature)
    if recovered.to_address() != pubkey.to_address():
        raise SignatureError("bad signature")


def string_to_pubkey(text: str) -> PublicKey:
    """Parse a compressed or uncompressed hex public key, with or without ``0x``."""
    text = text.removeprefix("0x").lower()
    try:
        raw = bytes.fromhex(text)
    except ValueError as exc:
        raise SignatureError(f"invalid hex public key: {exc}") from None
    return bytes_to_pubkey(raw)


def bytes_to_pubkey(data: bytes) -> PublicKey:
    """Parse a 33-byte compressed or 65-byte uncompressed public key."""
    if len(data) == 33:
        if data[0] not in (2, 3):
            raise SignatureError("invalid compressed public key prefix")
        x = int.from_bytes(data[1:], "big")
        if x >= _P:
            raise SignatureError("invalid public key")
        alpha = (x * x * x + 7) % _P
        y = pow(alpha, (_P + 1) // 4, _P)
        if y * y % _P != alpha:
            raise SignatureError("invalid public key")
        if y & 1 != data[0] & 1:
            y = _P - y
        return PublicKey(x, y)
    if len(data) != 65 or data[0] != 4:
        raise SignatureError("invalid public key length or prefix")
    x = int.from_bytes(data[1:33], "big")
    y = int.from_bytes(data[33:], "big")
    if x >= _P or y >= _P or not _on_curve(x, y):
        raise SignatureError("invalid public key")
    return PublicKey(x, y)


def compressed_pubkey_hex(pubkey: PublicKey) -> str:
    """Compressed public key as lower-case hex without ``0x``."""
    return pubkey.compressed().hex()