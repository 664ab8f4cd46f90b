# --- File: nanotdf/tdf_client.py ---
import logging
from typing import Iterable, Optional, Protocol, Union

from Crypto.PublicKey import ECC

import config
from errors import UnwrapFailed
from tdf_crypto.key_generation import load_ec_key
from tdf_crypto.key_wrapping import derive_binding_secret, unwrap_key, wrap_key
from tdf_crypto.policy_binding import BindingMode, require_valid_binding, sign_binding
from tdf_crypto.symmetric_ciphers import decrypt_payload, encrypt_payload
from .attributes import AttributeLike
from .envelope import MAX_CIPHERTEXT_SIZE, Envelope, check_envelope_bounds, parse_envelope, serialize_envelope
from .kas import KasLocator, KasPublicKeyClient, parse_kas_locator
from .policy import PolicyRule, build_policy, serialize_policy

logger = logging.getLogger(__name__)

KeyInput = Union[str, bytes, ECC.EccKey]


class KasPublicKeyProvider(Protocol):
    def get_public_key(self, kas_url: str) -> ECC.EccKey: ...


def _coerce_binding_mode(binding_mode: Union[BindingMode, str, int]) -> BindingMode:
    if isinstance(binding_mode, str):
        return BindingMode.from_name(binding_mode)
    return BindingMode(binding_mode)


def create_envelope(
    plaintext: Union[bytes, str],
    attributes: Iterable[AttributeLike],
    kas_locator: Union[str, KasLocator],
    binding_mode: Union[BindingMode, str, int],
    kas_public_key: KeyInput,
    signing_key: Optional[KeyInput] = None,
    rule: PolicyRule = PolicyRule.ALL_OF,
    dissemination: Iterable[str] = (),
) -> bytes:
    """
    Builds a serialized NanoTDF: policy, payload encryption, DEK wrap, binding,
    serialization, in that order. Any failure raises and nothing is returned.
    """
    locator = parse_kas_locator(kas_locator)
    mode = _coerce_binding_mode(binding_mode)
    if mode == BindingMode.ECDSA and signing_key is None:
        raise ValueError("ECDSA policy binding requires a signing key")
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    if len(plaintext) > MAX_CIPHERTEXT_SIZE:
        raise ValueError(f"Payload exceeds {MAX_CIPHERTEXT_SIZE} bytes; NanoTDF is for small payloads")

    # 1. Policy
    policy = build_policy(attributes, binding_mode=mode, rule=rule, dissemination=dissemination)
    policy_bytes = serialize_policy(policy)

    # 2. Payload under a fresh DEK
    dek, nonce, ciphertext, tag = encrypt_payload(plaintext)

    # 3. Wrap the DEK for the KAS; the plaintext DEK is dropped right after
    wrapped = wrap_key(dek, load_ec_key(kas_public_key))
    del dek
    wrapped_key_bytes = wrapped.to_bytes()

    # 4. Bind policy to wrapped key
    if mode == BindingMode.ECDSA:
        binding_key = load_ec_key(signing_key)
    else:
        binding_key = wrapped.binding_secret
    binding = sign_binding(mode, policy_bytes, wrapped_key_bytes, binding_key)

    # 5. Serialize
    envelope = Envelope(
        kas=locator,
        policy_bytes=policy_bytes,
        wrapped_key_bytes=wrapped_key_bytes,
        binding=binding,
        nonce=nonce,
        ciphertext=ciphertext,
        tag=tag,
    )
    data = serialize_envelope(envelope)
    logger.info(
        f"Created NanoTDF for {locator.url}: policy {policy.policy_id}, {len(policy.attributes)} attribute(s), "
        f"rule {policy.rule.name}, {mode.name} binding, {len(data)} bytes."
    )
    return data


def open_envelope(
    envelope: Union[bytes, Envelope],
    kas_private_key: KeyInput,
    verifying_key: Optional[KeyInput] = None,
) -> bytes:
    """
    Parses, verifies the policy binding, unwraps the DEK and decrypts, in that
    order. Binding verification always happens before the DEK is touched.
    """
    # 1. Structure
    if isinstance(envelope, Envelope):
        # model_copy and model_construct skip validation
        check_envelope_bounds(envelope)
    else:
        envelope = parse_envelope(envelope)
    kas_key = load_ec_key(kas_private_key)

    # 2. Binding
    mode_tag = envelope.binding_mode_tag
    binding_key = None
    if mode_tag == BindingMode.HMAC:
        try:
            binding_key = derive_binding_secret(envelope.wrapped_key, kas_key)
        except UnwrapFailed as derive_error:
            logger.warning(f"Could not derive HMAC binding secret: {derive_error.message}")
    elif mode_tag == BindingMode.ECDSA and verifying_key is not None:
        binding_key = load_ec_key(verifying_key)
    require_valid_binding(mode_tag, envelope.policy_bytes, envelope.wrapped_key_bytes, envelope.binding, binding_key)
    policy = envelope.policy

    # 3. DEK
    dek = unwrap_key(envelope.wrapped_key, kas_key)

    # 4. Payload
    plaintext = decrypt_payload(dek, envelope.nonce, envelope.ciphertext, envelope.tag)
    logger.info(f"Opened NanoTDF from {envelope.kas.url}: policy {policy.policy_id}, {len(plaintext)} bytes.")
    return plaintext


class TDFClient:
    """
    Convenience front end: resolves the KAS public key through a provider
    (HTTP client or local key store) and applies configured defaults.
    """
    def __init__(
        self,
        key_provider: Optional[KasPublicKeyProvider] = None,
        kas_url: Optional[str] = None,
        binding_mode: Optional[Union[BindingMode, str]] = None,
        signing_key: Optional[KeyInput] = None,
    ):
        self.key_provider = key_provider or KasPublicKeyClient(timeout=config.HTTP_TIMEOUT_SECONDS)
        self.kas_url = kas_url
        self.binding_mode = _coerce_binding_mode(binding_mode if binding_mode is not None else config.BINDING_MODE)
        self.signing_key = load_ec_key(signing_key) if signing_key is not None else None

    def encrypt(
        self,
        plaintext: Union[bytes, str],
        attributes: Iterable[AttributeLike] = (),
        kas_url: Optional[str] = None,
        binding_mode: Optional[Union[BindingMode, str]] = None,
        rule: PolicyRule = PolicyRule.ALL_OF,
        dissemination: Iterable[str] = (),
    ) -> bytes:
        locator = parse_kas_locator(kas_url or self.kas_url or config.get_kas_url())
        kas_public_key = self.key_provider.get_public_key(locator.url)
        return create_envelope(
            plaintext,
            attributes,
            locator,
            binding_mode if binding_mode is not None else self.binding_mode,
            kas_public_key,
            signing_key=self.signing_key,
            rule=rule,
            dissemination=dissemination,
        )

    def decrypt(
        self,
        data: Union[bytes, Envelope],
        kas_private_key: Optional[KeyInput] = None,
        verifying_key: Optional[KeyInput] = None,
    ) -> bytes:
        envelope = data if isinstance(data, Envelope) else parse_envelope(data)
        if kas_private_key is None:
            # Only a local key store can play the KAS here.
            get_private_key = getattr(self.key_provider, "get_private_key", None)
            if get_private_key is None:
                raise ValueError("No KAS private key given and the key provider cannot supply one")
            kas_private_key = get_private_key(envelope.kas.url)
        if verifying_key is None and self.signing_key is not None:
            verifying_key = self.signing_key.public_key()
        return open_envelope(envelope, kas_private_key, verifying_key)
