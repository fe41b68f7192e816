"""Ed25519 signing keys with scheduled and forced rotation."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

log = logging.getLogger(__name__)


@dataclass
class KeyRotationConfig:
    """Rotation interval and grace period, in seconds."""

    rotation_interval: float = 604_800.0
    grace_period: float = 600.0


@dataclass
class KeyRotationStatus:
    current_pk: bytes
    current_age_secs: int
    next_rotation_secs: int
    in_grace_period: bool
    grace_remaining_secs: int | None


@dataclass
class _KeyEntry:
    key: Ed25519PrivateKey
    created_at: float
    expires_at: float | None = None

    @property
    def public_key(self) -> bytes:
        return self.key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    def verifies(self, message: bytes, signature: bytes) -> bool:
        try:
            Ed25519PublicKey.from_public_bytes(self.public_key).verify(signature, message)
        except InvalidSignature:
            return False
        return True


class KeyManager:
    """Holds the current signing key and, during a grace period, the previous one."""

    def __init__(
        self,
        config: KeyRotationConfig | None = None,
        *,
        _key: Ed25519PrivateKey | None = None,
    ) -> None:
        self.config = config if config is not None else KeyRotationConfig()
        self._lock = threading.RLock()
        self._current = _KeyEntry(_key or Ed25519PrivateKey.generate(), time.monotonic())
        self._previous: _KeyEntry | None = None
        self._force_rotation = False

    @classmethod
    def with_secret(cls, secret: bytes, config: KeyRotationConfig | None = None) -> KeyManager:
        """Create a manager whose first key comes from a 32-byte secret."""
        return cls(config, _key=Ed25519PrivateKey.from_private_bytes(bytes(secret)))

    def public_key(self) -> bytes:
        with self._lock:
            return self._current.public_key

    def sign(self, message: bytes) -> bytes:
        with self._lock:
            return self._current.key.sign(message)

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Check a signature against the current key, then the previous one if still in grace."""
        with self._lock:
            if self._current.verifies(message, signature):
                return True
            prev = self._previous
            if prev is not None and prev.expires_at is not None and time.monotonic() < prev.expires_at:
                return prev.verifies(message, signature)
            return False

    def should_rotate(self) -> bool:
        with self._lock:
            if self._force_rotation:
                return True
            return time.monotonic() - self._current.created_at >= self.config.rotation_interval

    def force_rotate(self) -> None:
        with self._lock:
            self._force_rotation = True

    def rotate(self) -> bytes:
        """Replace the current key, keeping the old one for the grace period; return the new public key."""
        log.info("Performing key rotation")
        with self._lock:
            now = time.monotonic()
            old = self._current
            self._previous = _KeyEntry(old.key, old.created_at, now + self.config.grace_period)
            self._current = _KeyEntry(Ed25519PrivateKey.generate(), now)
            self._force_rotation = False
            new_pk = self._current.public_key
        log.info("Key rotation complete, new PK: %s", new_pk[:8].hex())
        return new_pk

    def cleanup(self) -> None:
        """Drop the previous key once its grace period is over."""
        with self._lock:
            prev = self._previous
            if prev is not None and (prev.expires_at is None or time.monotonic() >= prev.expires_at):
                log.info("Cleaning up expired previous key")
                self._previous = None

    def status(self) -> KeyRotationStatus:
        with self._lock:
            now = time.monotonic()
            age = now - self._current.created_at
            prev = self._previous
            grace_remaining = None
            if prev is not None and prev.expires_at is not None:
                grace_remaining = int(max(0.0, prev.expires_at - now))
            return KeyRotationStatus(
                current_pk=self._current.public_key,
                current_age_secs=int(age),
                next_rotation_secs=int(max(0.0, self.config.rotation_interval - age)),
                in_grace_period=prev is not None,
                grace_remaining_secs=grace_remaining,
            )