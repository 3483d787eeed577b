# src/wg_wizard/keys.py
"""
Dérivation déterministe des clés WireGuard.

Un seul secret racine de 32 octets suffit : chaque clé (serveur, peers,
preshared keys) est HKDF-SHA256(secret, sel fixe, label). Les labels sont
construits à partir de l'identifiant permanent du peer, jamais de sa
position dans la liste.
"""
from __future__ import annotations

import base64
import binascii
import hmac
import secrets
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .config import HKDF_SALT, KEY_BYTES
from .errors import InvalidRootSecret


SERVER_LABEL = "server:private"


def peer_private_label(peer_id: int) -> str:
    return f"peer:{peer_id}:private"


def peer_psk_label(peer_id: int) -> str:
    return f"peer:{peer_id}:psk"


# ---------- Primitives ----------

def hkdf_sha256(secret: bytes, salt: bytes, info: bytes, length: int = KEY_BYTES) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(secret)


def clamp_scalar(scalar: bytes) -> bytes:
    """Curve25519 clamping: clear the 3 low bits and the top bit, set bit 254."""
    if len(scalar) != KEY_BYTES:
        raise ValueError(f"Scalar must be {KEY_BYTES} bytes, got {len(scalar)}")
    h = bytearray(scalar)
    h[0] &= 0b11111000
    h[31] = (h[31] & 0b01111111) | 0b01000000
    return bytes(h)


def public_key_from_private(private_key: bytes) -> bytes:
    if len(private_key) != KEY_BYTES:
        raise ValueError(f"Private key must be {KEY_BYTES} bytes, got {len(private_key)}")
    public = X25519PrivateKey.from_private_bytes(private_key).public_key()
    return public.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def encode_key(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def decode_key(text: str) -> bytes:
    try:
        raw = base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 key: {text!r}") from exc
    if len(raw) != KEY_BYTES:
        raise ValueError(f"Key must decode to {KEY_BYTES} bytes, got {len(raw)}")
    return raw


# ---------- Secret racine ----------

class RootSecret:
    """The network's master secret. Losing it makes every derived key irreproducible."""

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes):
        if not isinstance(raw, (bytes, bytearray)) or len(raw) != KEY_BYTES:
            raise InvalidRootSecret(f"Root secret must be exactly {KEY_BYTES} bytes")
        self._raw = bytes(raw)

    @classmethod
    def generate(cls) -> "RootSecret":
        return cls(secrets.token_bytes(KEY_BYTES))

    @classmethod
    def from_base64(cls, text: str) -> "RootSecret":
        try:
            raw = base64.b64decode(text.strip(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidRootSecret("Root secret is not valid base64") from exc
        return cls(raw)

    def to_base64(self) -> str:
        return encode_key(self._raw)

    @property
    def raw(self) -> bytes:
        return self._raw

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RootSecret):
            return NotImplemented
        return hmac.compare_digest(self._raw, other._raw)

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return "RootSecret(<redacted>)"


# ---------- Hiérarchie ----------

@dataclass(frozen=True)
class KeyPair:
    private_key: bytes   # scalaire déjà clampé
    public_key: bytes

    @classmethod
    def from_private(cls, private_key: bytes) -> "KeyPair":
        clamped = clamp_scalar(private_key)
        return cls(private_key=clamped, public_key=public_key_from_private(clamped))

    @property
    def private_b64(self) -> str:
        return encode_key(self.private_key)

    @property
    def public_b64(self) -> str:
        return encode_key(self.public_key)

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_b64!r})"


def generate_root_secret() -> RootSecret:
    return RootSecret.generate()


def derive(root: RootSecret, label: str) -> bytes:
    return hkdf_sha256(root.raw, HKDF_SALT, label.encode("utf-8"), KEY_BYTES)


def derive_keypair(root: RootSecret, label: str) -> KeyPair:
    return KeyPair.from_private(derive(root, label))


class KeyHierarchy:
    """Label-indexed derivations from one root secret. Holds no other state."""

    def __init__(self, root: RootSecret):
        self.root = root

    def derive(self, label: str) -> bytes:
        return derive(self.root, label)

    def derive_keypair(self, label: str) -> KeyPair:
        return derive_keypair(self.root, label)

    def server_keypair(self) -> KeyPair:
        return self.derive_keypair(SERVER_LABEL)

    def peer_keypair(self, peer_id: int) -> KeyPair:
        return self.derive_keypair(peer_private_label(peer_id))

    def peer_preshared_key(self, peer_id: int) -> bytes:
        return self.derive(peer_psk_label(peer_id))
