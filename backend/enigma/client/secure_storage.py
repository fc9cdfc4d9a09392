"""Encrypted, player-scoped local storage.

Each item is stored as a Fernet token wrapping ``{payload, checksum}``:

- ``payload`` is the JSON-encoded value
- ``checksum`` is an HMAC-SHA256 over the payload and the player id

The Fernet key is derived with PBKDF2-HMAC-SHA256 from a random per-install
key and the player id, so an item written for one player neither decrypts nor
verifies for another. Any failure on read (bad token, broken JSON, checksum
mismatch) removes the item and reads as a miss.
"""

import base64
import hashlib
import hmac
import json
import logging
import os
import secrets
import tempfile
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

SALT = b'enigma-run/secure-storage/v1'
INSTALL_KEY_ITEM = '__install_key__'


class MemoryBackend:
    def __init__(self):
        self._items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self):
        return list(self._items)


class FileBackend:
    """One file per key under ``directory``; writes are atomic replaces."""

    suffix = '.blob'

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        name = base64.urlsafe_b64encode(key.encode('utf-8')).decode('ascii').rstrip('=')
        return os.path.join(self.directory, name + self.suffix)

    def get(self, key: str) -> Optional[str]:
        try:
            with open(self._path(key), 'r', encoding='utf-8') as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                fh.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def delete(self, key: str) -> None:
        try:
            os.unlink(self._path(key))
        except FileNotFoundError:
            pass

    def keys(self):
        found = []
        for name in os.listdir(self.directory):
            if not name.endswith(self.suffix):
                continue
            encoded = name[:-len(self.suffix)]
            padded = encoded + '=' * (-len(encoded) % 4)
            found.append(base64.urlsafe_b64decode(padded).decode('utf-8'))
        return found


class SecureStorage:
    def __init__(self, backend=None, install_key: Optional[bytes] = None, iterations: int = 100_000):
        self.backend = backend if backend is not None else MemoryBackend()
        self.iterations = iterations
        self._install_key = install_key
        self._fernets: Dict[str, Fernet] = {}

    @property
    def install_key(self) -> bytes:
        if self._install_key is None:
            stored = self.backend.get(INSTALL_KEY_ITEM)
            if stored:
                self._install_key = base64.urlsafe_b64decode(stored.encode('ascii'))
            else:
                self._install_key = secrets.token_bytes(32)
                self.backend.set(INSTALL_KEY_ITEM, base64.urlsafe_b64encode(self._install_key).decode('ascii'))
        return self._install_key

    def _fernet(self, player_id: str) -> Fernet:
        if player_id not in self._fernets:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=SALT + b':' + player_id.encode('utf-8'),
                iterations=self.iterations,
            )
            self._fernets[player_id] = Fernet(base64.urlsafe_b64encode(kdf.derive(self.install_key)))
        return self._fernets[player_id]

    def checksum(self, data: str, player_id: str) -> str:
        message = data.encode('utf-8') + b'\x00' + player_id.encode('utf-8')
        return hmac.new(self.install_key, message, hashlib.sha256).hexdigest()

    def set_item(self, key: str, value, player_id: str) -> bool:
        try:
            data = json.dumps(value, sort_keys=True)
            wrapper = json.dumps({'payload': data, 'checksum': self.checksum(data, player_id)})
            token = self._fernet(player_id).encrypt(wrapper.encode('utf-8'))
            self.backend.set(key, token.decode('ascii'))
            return True
        except (TypeError, ValueError, OSError) as exc:
            logger.error("secure storage write failed for %s: %s", key, exc)
            return False

    def get_item(self, key: str, player_id: str):
        stored = self.backend.get(key)
        if not stored:
            return None
        try:
            wrapper = json.loads(self._fernet(player_id).decrypt(stored.encode('utf-8')))
            data, checksum = wrapper['payload'], wrapper['checksum']
        except InvalidToken:
            logger.warning("secure storage item %s failed to decrypt, clearing it", key)
            self.remove_item(key)
            return None
        except (ValueError, KeyError, TypeError):
            logger.warning("secure storage item %s is corrupted, clearing it", key)
            self.remove_item(key)
            return None

        if not isinstance(data, str) or not isinstance(checksum, str) or \
                not hmac.compare_digest(checksum, self.checksum(data, player_id)):
            logger.warning("secure storage item %s failed its integrity check, possible tampering", key)
            self.remove_item(key)
            return None
        try:
            return json.loads(data)
        except ValueError:
            self.remove_item(key)
            return None

    def remove_item(self, key: str) -> None:
        self.backend.delete(key)

    def has_valid_item(self, key: str, player_id: str) -> bool:
        return self.get_item(key, player_id) is not None

    def clear_player_data(self, player_id: str) -> int:
        """Remove every item whose key is scoped to ``player_id``."""
        suffix = f"_{player_id}"
        removed = 0
        for key in self.backend.keys():
            if key != INSTALL_KEY_ITEM and key.endswith(suffix):
                self.backend.delete(key)
                removed += 1
        return removed
