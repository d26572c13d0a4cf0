"""API-key encryption and per-organization key resolution.

Stored keys use AES-256-GCM with a 16-byte IV and are serialized as
``"<iv hex>:<tag hex>:<ciphertext hex>"``.  Values that are not in that
three-part shape are legacy plaintext keys and are returned unchanged.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from rag_ingest.exceptions import MissingCredential, StorageFailed
from rag_ingest.storage.repository import DocumentRepository

logger = logging.getLogger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
KDF_SALT = b"rag-ingest-api-keys"
KDF_ITERATIONS = 100_000

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def derive_key(secret: str) -> bytes:
    """A 64-hex secret is used as-is; anything else is stretched with PBKDF2-SHA256."""
    if not secret:
        raise ValueError("Encryption secret is not configured")
    if _HEX_KEY.match(secret):
        return bytes.fromhex(secret)
    return hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), KDF_SALT, KDF_ITERATIONS, dklen=32)


def encrypt_api_key(api_key: str, secret: str) -> str:
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(derive_key(secret)).encrypt(iv, api_key.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_api_key(encrypted: str, secret: str) -> str:
    """Decrypt a stored key.

    Raises
    ------
    ValueError
        The secret is missing, the payload is not hex, or authentication
        of the ciphertext failed.
    """
    parts = encrypted.split(":")
    if len(parts) != 3:
        logger.warning("Stored API key is not encrypted; treating it as legacy plaintext")
        return encrypted

    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        plain = AESGCM(derive_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise ValueError("API key authentication failed (wrong secret or tampered value)") from exc
    return plain.decode("utf-8")


def mask_api_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}...{api_key[-4:]}"


class CredentialResolver:
    """Resolve the embedding API key for an organization.

    Order: organization-scoped encrypted key → global key →
    :class:`MissingCredential`.  Storage or decryption problems with the
    organization key are logged and fall through to the global key.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        *,
        global_key: str = "",
        encryption_secret: str = "",
        provider: str = "openai",
    ) -> None:
        self._repository = repository
        self._global_key = global_key
        self._secret = encryption_secret
        self.provider = provider

    async def resolve(self, organization_id: str | None) -> str:
        if organization_id:
            key = await self._organization_key(organization_id)
            if key:
                return key
        if self._global_key:
            return self._global_key
        raise MissingCredential(
            f"No {self.provider} API key configured for organization {organization_id or '<none>'} "
            "and no global key is set",
            {"organization_id": organization_id, "provider": self.provider},
        )

    async def _organization_key(self, organization_id: str) -> str | None:
        try:
            encrypted = await self._repository.get_provider_key(organization_id, self.provider)
        except StorageFailed as exc:
            logger.warning("Could not load %s key for org %s: %s", self.provider, organization_id, exc.message)
            return None
        if not encrypted:
            return None
        try:
            key = decrypt_api_key(encrypted, self._secret)
        except ValueError as exc:
            logger.error(
                "Failed to decrypt %s key for org %s, falling back to global key: %s",
                self.provider,
                organization_id,
                exc,
            )
            return None
        logger.debug("Using organization %s key %s", organization_id, mask_api_key(key))
        return key
