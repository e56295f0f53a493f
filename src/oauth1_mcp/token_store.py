"""Credential persistence for OAuth1 access tokens."""

import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from .models import StoredCredentials

logger = logging.getLogger(__name__)


class CredentialStore:
    """File-based persistence for OAuth1 credentials.

    Stores the access token pair and identity fields in a JSON file at the
    configured path with secure permissions.
    """

    def __init__(self, storage_path: str) -> None:
        """Initialize the credential store.

        Args:
            storage_path: Path to the credential file (supports ~ expansion).
        """
        self._storage_path = Path(os.path.expanduser(storage_path))

    @property
    def path(self) -> Path:
        return self._storage_path

    def _ensure_directory(self) -> None:
        """Ensure the storage directory exists with secure permissions."""
        directory = self._storage_path.parent
        if not directory.exists():
            directory.mkdir(parents=True, mode=0o700)

    def exists(self) -> bool:
        return self._storage_path.exists()

    def load(self) -> StoredCredentials | None:
        """Load the stored credentials.

        Fields missing from the file default to empty strings.

        Returns:
            The stored credentials, or None if the file is absent or unreadable.
        """
        if not self._storage_path.exists():
            logger.info("Unable to locate credentials file at %s", self._storage_path)
            return None

        try:
            with open(self._storage_path, encoding="utf-8") as f:
                data = json.load(f)
            credentials = StoredCredentials.model_validate(data)
        except (json.JSONDecodeError, OSError, ValidationError) as e:
            logger.warning(
                "Could not read credentials file %s: %s", self._storage_path, e
            )
            return None

        if not credentials.access_token or not credentials.access_secret:
            logger.warning(
                "Found a credentials file, but access token / secret were empty."
            )

        return credentials

    def save(self, credentials: StoredCredentials) -> None:
        """Save credentials with secure permissions.

        Args:
            credentials: The credentials to persist.

        Raises:
            OSError: If the file cannot be written.
        """
        self._ensure_directory()

        # Write to temp file first, then rename for atomicity
        temp_path = self._storage_path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(credentials.model_dump(), f, indent=2)

        # Set secure permissions (owner read/write only)
        os.chmod(temp_path, 0o600)

        # Atomic rename
        temp_path.replace(self._storage_path)

    def delete(self) -> None:
        """Delete the credential file if it exists."""
        if self._storage_path.exists():
            self._storage_path.unlink()
