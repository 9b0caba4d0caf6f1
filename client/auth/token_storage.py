"""
Token Storage for the authenticated API client.

This module provides the persistent key-value backends (system keyring or an
encrypted file as fallback) and the TokenStore that keeps the access and
requester tokens in two named slots on top of them.
"""

import os
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Iterable, Union

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken
from multidict import CIMultiDict

from shared.exceptions import TokenStorageError, ErrorCode
from shared.interfaces import IKeyValueStorage
from client.auth.token_codec import AuthToken, decode, encode

logger = logging.getLogger(__name__)


class MemoryStorage(IKeyValueStorage):
    """Process-local storage; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class KeyringStorage(IKeyValueStorage):
    """Storage in the system keyring, one entry per key."""

    def __init__(self, service_name: str = "auth-client"):
        self.service_name = service_name

    def get(self, key: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service_name, key)
        except KeyringError as e:
            raise TokenStorageError(
                f"Failed to read '{key}' from keyring: {e}",
                error_code=ErrorCode.STORAGE_READ_FAILED,
                cause=e
            )

    def set(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self.service_name, key, value)
        except KeyringError as e:
            raise TokenStorageError(
                f"Failed to write '{key}' to keyring: {e}",
                cause=e
            )

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            pass  # already absent
        except KeyringError as e:
            raise TokenStorageError(
                f"Failed to delete '{key}' from keyring: {e}",
                cause=e
            )

    def delete_many(self, keys: Iterable[str]) -> None:
        # Keyring has no transactions; deletion follows the given order and
        # stops at the first failure, so the caller decides which key may
        # outlive a partial clear.
        for key in keys:
            self.delete(key)


class EncryptedFileStorage(IKeyValueStorage):
    """
    All keys kept in one Fernet-encrypted JSON file.

    The encryption key is kept in the system keyring when ``use_keyring`` is
    set, otherwise in a key file next to the data file. Both files are
    written with 0600 permissions.

    Reading a file that cannot be decrypted raises TokenStorageError; writing
    replaces it and deleting removes it, so a lost key never locks out
    logout or a fresh login.
    """

    def __init__(
        self,
        path: Union[str, Path],
        service_name: str = "auth-client",
        use_keyring: bool = False,
        key: Optional[bytes] = None
    ):
        self.storage_path = Path(path)
        self.key_path = self.storage_path.with_name(self.storage_path.name + '.key')
        self.service_name = service_name
        self.use_keyring = use_keyring
        self._encryption_key: Optional[bytes] = key

    def _get_encryption_key(self) -> bytes:
        """Get or create the encryption key."""
        if self._encryption_key:
            return self._encryption_key

        try:
            if self.use_keyring:
                stored_key = keyring.get_password(self.service_name, "encryption_key")
                if stored_key:
                    self._encryption_key = stored_key.encode()
                    return self._encryption_key
            elif self.key_path.exists():
                self._encryption_key = self.key_path.read_bytes().strip()
                return self._encryption_key

            key = Fernet.generate_key()
            if self.use_keyring:
                keyring.set_password(self.service_name, "encryption_key", key.decode())
            else:
                self.key_path.parent.mkdir(parents=True, exist_ok=True)
                self.key_path.write_bytes(key)
                os.chmod(self.key_path, 0o600)
        except (KeyringError, OSError) as e:
            raise TokenStorageError(
                f"Encryption key unavailable: {e}",
                error_code=ErrorCode.STORAGE_UNAVAILABLE,
                cause=e
            )

        logger.info("Created new token storage encryption key")
        self._encryption_key = key
        return key

    def _load_all(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}

        try:
            encrypted_data = self.storage_path.read_bytes()
            decrypted_data = Fernet(self._get_encryption_key()).decrypt(encrypted_data)
            data = json.loads(decrypted_data.decode())
            if not isinstance(data, dict):
                raise ValueError("token file does not hold a JSON object")
            return data
        except (OSError, InvalidToken, ValueError) as e:
            raise TokenStorageError(
                f"Failed to read token file {self.storage_path}: {type(e).__name__}: {e}",
                error_code=ErrorCode.STORAGE_READ_FAILED,
                cause=e
            )

    def _save_all(self, data: Dict[str, str]) -> None:
        try:
            if not data:
                if self.storage_path.exists():
                    self.storage_path.unlink()
                return

            encrypted_data = Fernet(self._get_encryption_key()).encrypt(json.dumps(data).encode())
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.storage_path.with_name(self.storage_path.name + '.tmp')
            temp_path.write_bytes(encrypted_data)
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, self.storage_path)
        except OSError as e:
            raise TokenStorageError(
                f"Failed to write token file {self.storage_path}: {e}",
                cause=e
            )

    def get(self, key: str) -> Optional[str]:
        return self._load_all().get(key)

    def set(self, key: str, value: str) -> None:
        # An unreadable file is replaced rather than blocking every later login.
        try:
            data = self._load_all()
        except TokenStorageError as e:
            logger.warning(f"Overwriting unreadable token file: {e.message}")
            data = {}
        data[key] = value
        self._save_all(data)

    def delete(self, key: str) -> None:
        self.delete_many([key])

    def delete_many(self, keys: Iterable[str]) -> None:
        try:
            data = self._load_all()
        except TokenStorageError as e:
            logger.warning(f"Removing unreadable token file: {e.message}")
            self._save_all({})
            return

        changed = False
        for key in keys:
            if key in data:
                del data[key]
                changed = True
        if changed:
            self._save_all(data)


def keyring_available(service_name: str = "auth-client") -> bool:
    """Check if the system keyring can store and return a value."""
    test_key = f"{service_name}_test"
    try:
        keyring.set_password(service_name, test_key, "test")
        result = keyring.get_password(service_name, test_key)
        keyring.delete_password(service_name, test_key)
        return result == "test"
    except Exception as e:
        logger.debug(f"Keyring not available: {e}")
        return False


def create_storage(
    backend: str = "auto",
    service_name: str = "auth-client",
    file_path: Optional[Union[str, Path]] = None
) -> IKeyValueStorage:
    """
    Create the storage backend named in the configuration.

    Args:
        backend: One of auto, keyring, file, memory
        service_name: Keyring service name
        file_path: Path of the encrypted token file

    Returns:
        Storage backend instance
    """
    if backend == "memory":
        storage = MemoryStorage()
    elif backend == "keyring":
        storage = KeyringStorage(service_name)
    elif backend in ("file", "auto"):
        if backend == "auto" and keyring_available(service_name):
            storage = KeyringStorage(service_name)
        else:
            if file_path is None:
                raise ValueError("file_path is required for encrypted file storage")
            storage = EncryptedFileStorage(file_path, service_name=service_name)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    logger.info(f"Token storage initialized ({type(storage).__name__})")
    return storage


class TokenSlot(Enum):
    """Named token slots and their storage keys."""
    ACCESS = "AUTH_TOKEN"
    REQUESTER = "AUTH_REQUESTER_TOKEN"


class TokenStore:
    """
    Two token slots on top of a key-value storage backend.

    Pure storage with no refresh policy. A missing slot is reported as None;
    backend failures raise TokenStorageError.
    """

    def __init__(self, storage: IKeyValueStorage):
        self.storage = storage

    def get(self, slot: TokenSlot) -> Optional[AuthToken]:
        """
        Read a token slot.

        Returns:
            The stored token, or None if the slot is missing or holds an
            empty string
        """
        raw = self._call("read", slot, self.storage.get, slot.value)
        if raw is None:
            return None

        token = decode(raw)
        if token.is_empty:
            logger.warning(f"Ignoring empty value stored in {slot.name} slot")
            return None
        return token

    def set(self, slot: TokenSlot, token: AuthToken) -> None:
        """Overwrite a token slot."""
        if token.is_empty:
            raise ValueError(f"Refusing to store an empty token in {slot.name} slot")
        self._call("write", slot, self.storage.set, slot.value, encode(token))
        logger.debug(f"Stored token in {slot.name} slot")

    def clear(self) -> None:
        """
        Remove both slots.

        The requester token goes first: a failure part way through can leave
        an access token behind, but never one that can still be refreshed.
        """
        keys = [TokenSlot.REQUESTER.value, TokenSlot.ACCESS.value]
        try:
            self.storage.delete_many(keys)
        except TokenStorageError:
            raise
        except Exception as e:
            raise TokenStorageError(f"Failed to clear token storage: {e}", cause=e)
        logger.info("Token storage cleared")

    def store_from_headers(self, headers: CIMultiDict) -> Optional[AuthToken]:
        """
        Persist every ``authorization`` header value as the requester token.

        Args:
            headers: Response headers

        Returns:
            The last token stored, or None if no non-empty header was present
        """
        stored = None
        for value in headers.getall('Authorization', []):
            token = decode(value)
            if token.is_empty:
                logger.error("Ignoring empty authorization header")
                continue
            self.set(TokenSlot.REQUESTER, token)
            stored = token
        return stored

    def _call(self, action, slot, func, *args):
        try:
            return func(*args)
        except TokenStorageError:
            raise
        except Exception as e:
            raise TokenStorageError(
                f"Failed to {action} {slot.name} token: {e}",
                error_code=ErrorCode.STORAGE_READ_FAILED if action == "read" else ErrorCode.STORAGE_WRITE_FAILED,
                cause=e
            )
