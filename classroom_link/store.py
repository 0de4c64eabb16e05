"""Encrypted local storage for the portal user and classroom link status.

The file holds who is signed in to the portal and the last link status the
client saw. Provider tokens are never written here; the backing server keeps
them.

Protection:
- Fernet symmetric encryption (AES-128-CBC + HMAC)
- OS keyring for the encryption key (Keychain, libsecret, DPAPI)
- 0600 file permissions
- File locking against concurrent CLI invocations
"""

import base64
import hashlib
import json
import logging
import os
import stat
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

import keyring
from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Hold an fcntl lock on a sidecar ``.lock`` file."""
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r") as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
else:
    import msvcrt

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Hold an msvcrt lock on a sidecar ``.lock`` file.

        msvcrt has no shared locks, so readers lock exclusively too.
        """
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r+") as lock_file:
            try:
                msvcrt.locking(lock_file.fileno(), msvcrt.LK_LOCK, 1)
                yield
            finally:
                try:
                    msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass


KEYRING_SERVICE = "classroom-link"
KEYRING_USERNAME = "store-encryption-key"

DEFAULT_STORE_DIR = Path.home() / ".cache" / "classroom-link"

USER_FILE = "user.json"


class UserStoreError(Exception):
    """Error in user store operations."""

    pass


class UserStoreDecryptionError(UserStoreError):
    """The store file exists but cannot be read.

    Usually the encryption key changed (keyring cleared, different machine).
    Run ``classroom-link user clear`` and sign in again.
    """

    pass


@dataclass
class LinkStatus:
    """Last known classroom link state for a user."""

    authorized: bool
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"authorized": self.authorized, "updated_at": self.updated_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LinkStatus":
        return cls(
            authorized=bool(data["authorized"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


def _derive_fallback_key() -> bytes:
    """Derive a Fernet key from machine-specific data when keyring is unavailable."""
    components = []

    machine_id_path = Path("/etc/machine-id")
    if machine_id_path.exists():
        components.append(machine_id_path.read_text().strip())

    components.append(str(Path.home()))
    components.append(os.environ.get("USER", os.environ.get("USERNAME", "classroom-link")))

    key_bytes = hashlib.sha256(":".join(components).encode()).digest()
    return base64.urlsafe_b64encode(key_bytes)


class UserStore:
    """Encrypted record of the current portal user.

    Link status is kept per user id, so switching users and back keeps the
    previous user's last known status.
    """

    def __init__(self, store_dir: Path | None = None):
        self.store_dir = store_dir or DEFAULT_STORE_DIR
        self._cipher: Fernet | None = None
        self._using_keyring = False

        self._init_storage()
        self._init_encryption()

    def _init_storage(self) -> None:
        self.store_dir.mkdir(parents=True, exist_ok=True)
        try:
            self.store_dir.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not set directory permissions: {e}")

    def _init_encryption(self) -> None:
        """Load the key from the keyring, creating it on first use."""
        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)

            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key)
                logger.debug("Generated new encryption key in keyring")

            self._cipher = Fernet(key.encode("ascii"))
            self._using_keyring = True

        except Exception as e:
            logger.warning(
                f"Keyring not available: {type(e).__name__}: {e}. "
                f"Using fallback encryption (machine-derived key)."
            )
            self._cipher = Fernet(_derive_fallback_key())
            self._using_keyring = False

    def _read(self) -> dict[str, Any]:
        """Read and decrypt the store file under a shared lock.

        Raises:
            UserStoreDecryptionError: If the file cannot be decrypted or parsed
        """
        filepath = self.store_dir / USER_FILE
        if not filepath.exists():
            return {}
        if self._cipher is None:
            raise UserStoreError("Encryption not initialized")

        try:
            with _file_lock(filepath, exclusive=False):
                encrypted = filepath.read_text()
            result: dict[str, Any] = json.loads(
                self._cipher.decrypt(encrypted.encode("ascii")).decode("utf-8")
            )
            return result
        except InvalidToken as e:
            raise UserStoreDecryptionError(
                f"Cannot decrypt {USER_FILE}. The encryption key may have changed. "
                f"Run 'classroom-link user clear' and sign in again."
            ) from e
        except json.JSONDecodeError as e:
            raise UserStoreDecryptionError(
                f"{USER_FILE} is corrupted. Run 'classroom-link user clear' and sign in again."
            ) from e

    def _write(self, data: dict[str, Any]) -> None:
        """Encrypt and write the store file under an exclusive lock."""
        if self._cipher is None:
            raise UserStoreError("Encryption not initialized")

        filepath = self.store_dir / USER_FILE
        encrypted = self._cipher.encrypt(json.dumps(data, indent=2).encode("utf-8")).decode("ascii")

        with _file_lock(filepath, exclusive=True):
            filepath.write_text(encrypted)
            try:
                filepath.chmod(stat.S_IRUSR | stat.S_IWUSR)
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")

    # Current user

    def get_user_id(self) -> str | None:
        """Return the signed-in portal user, or None."""
        user_id = self._read().get("current_user")
        return user_id if isinstance(user_id, str) and user_id else None

    def get_display_name(self) -> str | None:
        return self._read().get("display_name")

    def set_user(self, user_id: str, display_name: str | None = None) -> None:
        """Make ``user_id`` the signed-in portal user."""
        if not user_id or not user_id.strip():
            raise UserStoreError("User ID must not be empty")

        data = self._read()
        data["current_user"] = user_id.strip()
        data["display_name"] = display_name
        self._write(data)
        logger.debug(f"Current user set to {user_id}")

    def clear_user(self) -> bool:
        """Sign the current user out, keeping recorded link statuses.

        Returns:
            True if a user was signed in
        """
        data = self._read()
        if not data.get("current_user"):
            return False

        data["current_user"] = None
        data["display_name"] = None
        self._write(data)
        return True

    # Link status

    def get_link_status(self, user_id: str) -> LinkStatus | None:
        """Return the last recorded link status for a user."""
        entry = self._read().get("links", {}).get(user_id)
        if entry is None:
            return None

        try:
            return LinkStatus.from_dict(entry)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Invalid link status for {user_id}: {e}")
            return None

    def set_link_status(self, user_id: str, authorized: bool) -> LinkStatus:
        """Record the link status for a user."""
        status = LinkStatus(authorized=authorized, updated_at=datetime.now(timezone.utc))

        data = self._read()
        data.setdefault("links", {})[user_id] = status.to_dict()
        self._write(data)

        logger.debug(f"Recorded link status for {user_id}: {authorized}")
        return status

    def clear_all(self) -> None:
        """Delete the store file."""
        filepath = self.store_dir / USER_FILE
        if filepath.exists():
            filepath.unlink()
        logger.info("Cleared local user store")

    def is_using_keyring(self) -> bool:
        return self._using_keyring
