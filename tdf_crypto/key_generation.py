# tdf_crypto/key_generation.py
import logging
from typing import Tuple, Union

from Crypto.PublicKey import ECC

logger = logging.getLogger(__name__)

CURVE_NAME = "P-256"
COMPRESSED_PUBLIC_KEY_SIZE = 33


def generate_ec_keypair() -> Tuple[ECC.EccKey, ECC.EccKey]:
    """
    Generates a P-256 key pair.
    Returns:
        tuple: (private_key, public_key) as PyCryptodome EccKey objects.
    """
    private_key = ECC.generate(curve=CURVE_NAME)
    return private_key, private_key.public_key()


def generate_ec_keypair_pem() -> Tuple[str, str]:
    """Generates a P-256 key pair and returns (private_pem, public_pem)."""
    private_key, public_key = generate_ec_keypair()
    logger.info("Generated P-256 keypair.")
    return private_key.export_key(format="PEM"), public_key.export_key(format="PEM")


def load_ec_key(key: Union[str, bytes, ECC.EccKey]) -> ECC.EccKey:
    """Accepts a PEM/DER encoded key or an already imported EccKey."""
    if isinstance(key, ECC.EccKey):
        return key
    imported = ECC.import_key(key)
    if imported.curve not in ("NIST P-256", "p256", "P-256", "prime256v1", "secp256r1"):
        raise ValueError(f"Unsupported curve '{imported.curve}', expected {CURVE_NAME}")
    return imported


def encode_public_key(public_key: ECC.EccKey) -> bytes:
    """Compressed SEC1 point, 33 bytes for P-256."""
    if public_key.has_private():
        public_key = public_key.public_key()
    return public_key.export_key(format="SEC1", compress=True)


def decode_public_key(encoded: bytes) -> ECC.EccKey:
    """Inverse of encode_public_key. Invalid points raise ValueError."""
    if len(encoded) != COMPRESSED_PUBLIC_KEY_SIZE:
        raise ValueError(f"Compressed P-256 point must be {COMPRESSED_PUBLIC_KEY_SIZE} bytes, got {len(encoded)}")
    return ECC.import_key(encoded, curve_name=CURVE_NAME)
