# tdf_crypto/policy_binding.py
import logging
from enum import IntEnum
from typing import Optional, Union

from Crypto.Hash import HMAC, SHA256
from Crypto.PublicKey import ECC
from Crypto.Signature import DSS

from errors import BindingMismatch

logger = logging.getLogger(__name__)

ECDSA_BINDING_SIZE = 64  # r || s for P-256
HMAC_BINDING_SIZE = 32


class BindingMode(IntEnum):
    """Policy binding variant; the value is the tag written into the policy descriptor."""
    HMAC = 0
    ECDSA = 1

    @classmethod
    def from_name(cls, name: str) -> "BindingMode":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown binding mode '{name}'. Expected 'ecdsa' or 'hmac'.") from None


BindingKey = Union[ECC.EccKey, bytes]


def _binding_message(policy_bytes: bytes, wrapped_key_bytes: bytes) -> bytes:
    return policy_bytes + wrapped_key_bytes


def sign_binding(mode: BindingMode, policy_bytes: bytes, wrapped_key_bytes: bytes, signing_key: BindingKey) -> bytes:
    """
    Computes the policy binding over (policy || wrapped key).
    ECDSA mode expects a P-256 private EccKey; HMAC mode expects the binding secret bytes.
    """
    message = _binding_message(policy_bytes, wrapped_key_bytes)
    if mode == BindingMode.ECDSA:
        if not isinstance(signing_key, ECC.EccKey) or not signing_key.has_private():
            raise TypeError("ECDSA binding requires a private EccKey")
        return DSS.new(signing_key, "fips-186-3").sign(SHA256.new(message))
    elif mode == BindingMode.HMAC:
        if not isinstance(signing_key, bytes) or not signing_key:
            raise TypeError("HMAC binding requires non-empty secret bytes")
        return HMAC.new(signing_key, msg=message, digestmod=SHA256).digest()
    raise ValueError(f"Unsupported binding mode: {mode!r}")


def verify_binding(
    mode: Union[BindingMode, int],
    policy_bytes: bytes,
    wrapped_key_bytes: bytes,
    binding: bytes,
    verifying_key: Optional[BindingKey],
) -> bool:
    """Returns True only when the binding checks out. Unknown modes never verify."""
    message = _binding_message(policy_bytes, wrapped_key_bytes)
    if mode == BindingMode.ECDSA:
        if not isinstance(verifying_key, ECC.EccKey) or len(binding) != ECDSA_BINDING_SIZE:
            return False
        try:
            DSS.new(verifying_key, "fips-186-3").verify(SHA256.new(message), binding)
            return True
        except ValueError:
            return False
    elif mode == BindingMode.HMAC:
        if not isinstance(verifying_key, bytes) or len(binding) != HMAC_BINDING_SIZE:
            return False
        try:
            HMAC.new(verifying_key, msg=message, digestmod=SHA256).verify(binding)
            return True
        except ValueError:
            return False
    logger.warning(f"Binding verification requested for unknown mode tag {mode!r}.")
    return False


def require_valid_binding(
    mode: Union[BindingMode, int],
    policy_bytes: bytes,
    wrapped_key_bytes: bytes,
    binding: bytes,
    verifying_key: Optional[BindingKey],
) -> None:
    """Raises BindingMismatch (and logs a security event) when verification fails."""
    if verify_binding(mode, policy_bytes, wrapped_key_bytes, binding, verifying_key):
        return
    logger.error(
        f"SECURITY: policy binding mismatch (mode tag {int(mode)}, binding {len(binding)} bytes). "
        "Envelope rejected before key unwrap."
    )
    raise BindingMismatch("Policy binding does not match policy and wrapped key", details={"mode": int(mode)})
