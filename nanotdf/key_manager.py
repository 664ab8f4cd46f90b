# --- File: nanotdf/key_manager.py ---
import json
import os
import logging
from typing import Dict, Iterable, Optional

from Crypto.PublicKey import ECC

import config
from errors import ConfigurationError, KeyServiceUnavailable
from tdf_crypto.key_generation import generate_ec_keypair_pem, load_ec_key
from .kas import parse_kas_locator

logger = logging.getLogger(__name__)


class LocalKasKeyStore:
    """
    File-backed P-256 key pairs per KAS URL, standing in for the KAS side during
    development and tests. Keys for the given URLs are generated on first use
    and persisted as PEM in a JSON file.
    """
    def __init__(self, key_file_path: Optional[str] = config.KAS_KEYS_FILE, kas_urls: Iterable[str] = ()):
        self.key_file_path = key_file_path
        self.kas_keys: Dict[str, Dict[str, str]] = {}
        self._is_dirty = False  # set when keys were generated and need saving
        self._load_keys()
        for kas_url in kas_urls:
            self.ensure_keys(kas_url)
        self._save_keys()

    @staticmethod
    def _key_id(kas_url: str) -> str:
        return parse_kas_locator(kas_url).url

    def _load_keys(self):
        """Loads keys from the key file, if there is one."""
        if not self.key_file_path or not os.path.exists(self.key_file_path):
            return
        try:
            with open(self.key_file_path, 'r') as f:
                self.kas_keys = json.load(f)
            logger.info(f"Loaded KAS keys for {len(self.kas_keys)} KAS(es) from {self.key_file_path}")
        except (IOError, json.JSONDecodeError) as e:
            # Regenerating would orphan every envelope wrapped for the old keys.
            logger.error(f"Error loading KAS keys from {self.key_file_path}: {e}")
            raise ConfigurationError(
                f"KAS key file {self.key_file_path} is unreadable",
                details={"path": self.key_file_path},
            ) from e

    def _save_keys(self):
        """Saves the current KAS keys to the JSON file."""
        if not self._is_dirty or not self.key_file_path:
            logger.debug("No changes to KAS keys, skipping save.")
            return
        key_dir = os.path.dirname(self.key_file_path)
        if key_dir and not os.path.exists(key_dir):
            os.makedirs(key_dir, exist_ok=True)
            logger.info(f"Created directory for key file: {key_dir}")

        with open(self.key_file_path, 'w') as f:
            json.dump(self.kas_keys, f, indent=4)
        logger.info(f"KAS keys saved to {self.key_file_path}")
        self._is_dirty = False

    def ensure_keys(self, kas_url: str) -> str:
        """Generates a key pair for the KAS if none is stored. Returns the normalized KAS URL."""
        key_id = self._key_id(kas_url)
        if not self.kas_keys.get(key_id):
            logger.warning(f"No keys stored for KAS '{key_id}'. Generating a new P-256 keypair.")
            private_pem, public_pem = generate_ec_keypair_pem()
            self.kas_keys[key_id] = {"private_key_pem": private_pem, "public_key_pem": public_pem}
            self._is_dirty = True
        return key_id

    def register_kas(self, kas_url: str) -> str:
        key_id = self.ensure_keys(kas_url)
        self._save_keys()
        return key_id

    def _get(self, kas_url: str, field: str) -> ECC.EccKey:
        key_id = self._key_id(kas_url)
        keys = self.kas_keys.get(key_id)
        if not keys or not keys.get(field):
            logger.warning(f"{field} not found for KAS: {key_id}")
            raise KeyServiceUnavailable(f"No key material for KAS '{key_id}'", details={"kas": key_id})
        return load_ec_key(keys[field])

    def get_public_key(self, kas_url: str) -> ECC.EccKey:
        return self._get(kas_url, "public_key_pem")

    def get_private_key(self, kas_url: str) -> ECC.EccKey:
        return self._get(kas_url, "private_key_pem")
