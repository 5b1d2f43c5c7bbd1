"""
Encrypted storage for the chat service API key.

The key is encrypted with Fernet symmetric encryption. The Fernet key itself
is generated randomly on first use and kept in a separate owner-only file in
the user data directory.

Security Design:
    - The API key is never written in plaintext
    - Fernet key and ciphertext live in separate files, both mode 0600
    - Writes are atomic (temp file + rename)

Threat Model:
    - Protects against: casual inspection of the history store, the API key
      leaking into export archives (the key files are outside history/ and
      files/ and are never exported)
    - Does NOT protect against: anyone who can read both files, memory
      inspection, or compromise of the running process
"""

import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

KEY_FILENAME = "secret.key"
API_KEY_FILENAME = "apikey.enc"


class CredentialError(Exception):
    """Raised when the stored API key cannot be read or written."""

    pass


class ApiKeyStore:
    """
    Stores one API key encrypted at rest.

    Usage:
        keys = ApiKeyStore(user_data_dir)
        keys.save("sk-...")
        api_key = keys.load()

    Attributes:
        key_path: Path to the Fernet key file.
        api_key_path: Path to the encrypted API key.
    """

    def __init__(self, user_data_dir: Path) -> None:
        self.user_data_dir = Path(user_data_dir)
        self.key_path = self.user_data_dir / KEY_FILENAME
        self.api_key_path = self.user_data_dir / API_KEY_FILENAME

    def has_api_key(self) -> bool:
        return self.api_key_path.exists()

    def save(self, api_key: str) -> None:
        """
        Encrypt and store the API key, replacing any previous one.

        Raises:
            CredentialError: If the files cannot be written.
        """
        fernet = self._fernet(create=True)
        try:
            self._write_secure_file(self.api_key_path, fernet.encrypt(api_key.encode("utf-8")))
        except OSError as e:
            raise CredentialError(f"Cannot write API key: {e}") from e
        logger.info("API key saved")

    def load(self) -> str:
        """
        Decrypt and return the API key.

        Returns:
            The API key, or an empty string if none has been saved.

        Raises:
            CredentialError: If the stored key cannot be decrypted.
        """
        if not self.has_api_key():
            return ""
        fernet = self._fernet(create=False)
        try:
            return fernet.decrypt(self.api_key_path.read_bytes()).decode("utf-8")
        except InvalidToken as e:
            raise CredentialError("Stored API key cannot be decrypted") from e
        except OSError as e:
            raise CredentialError(f"Cannot read API key: {e}") from e

    def clear(self) -> bool:
        """Delete the stored API key. Returns True if one existed."""
        if not self.has_api_key():
            return False
        self.api_key_path.unlink()
        logger.info("API key removed")
        return True

    def _fernet(self, create: bool) -> Fernet:
        if self.key_path.exists():
            return Fernet(self.key_path.read_bytes())
        if not create:
            raise CredentialError(f"Encryption key missing: {self.key_path}")

        key = Fernet.generate_key()
        try:
            self.user_data_dir.mkdir(parents=True, exist_ok=True)
            self._write_secure_file(self.key_path, key)
        except OSError as e:
            raise CredentialError(f"Cannot create encryption key: {e}") from e
        return Fernet(key)

    def _write_secure_file(self, path: Path, data: bytes) -> None:
        """
        Write data to file with owner-only permissions.

        Uses atomic write (write to temp, then rename) to prevent
        partial writes from corrupting the file.
        """
        temp_path = path.with_suffix(".tmp")

        try:
            temp_path.write_bytes(data)

            try:
                os.chmod(temp_path, 0o600)
            except OSError:
                # Windows
                pass

            temp_path.replace(path)

        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise
