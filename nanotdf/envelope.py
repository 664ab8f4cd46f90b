# --- File: nanotdf/envelope.py ---
"""
NanoTDF envelope model and binary codec.

    magic "L1" (2) | version (1) |
    kas protocol (1) | kas body length (1) | kas body |
    policy length (2) | policy |
    wrapped key length (2) | wrapped key |
    binding length (2) | binding |
    payload length (3) | nonce (12) | ciphertext | tag (16)

All integers are big-endian. Parsing is purely structural: the policy and the
wrapped key stay opaque bytes until their binding has been verified.
"""
import struct

from pydantic import BaseModel, ConfigDict, Field, model_validator

from errors import InvalidKasLocator, MalformedEnvelope
from tdf_crypto.key_wrapping import WrappedKey
from tdf_crypto.symmetric_ciphers import NONCE_SIZE, TAG_SIZE
from .kas import KasLocator, KasProtocol, parse_kas_locator
from .policy import MIN_POLICY_SIZE, PolicyDescriptor, binding_mode_of, deserialize_policy


MAGIC = b"L1"
VERSION = 0x4C
SUPPORTED_VERSIONS = (VERSION,)

MAX_KAS_BODY = 0xFF
MAX_POLICY_SIZE = 0xFFFF
MAX_WRAPPED_KEY_SIZE = 128
MAX_BINDING_SIZE = 128
MAX_PAYLOAD_SIZE = 0xFFFFFF
MAX_CIPHERTEXT_SIZE = MAX_PAYLOAD_SIZE - NONCE_SIZE - TAG_SIZE

_U8 = struct.Struct("!B")
_U16 = struct.Struct("!H")


class Envelope(BaseModel):
    """A complete NanoTDF. Immutable once built or parsed."""
    model_config = ConfigDict(frozen=True)

    version: int = Field(default=VERSION, description="Format version byte")
    kas: KasLocator = Field(..., description="Key access service this envelope is bound to")
    policy_bytes: bytes = Field(..., description="Serialized policy descriptor")
    wrapped_key_bytes: bytes = Field(..., description="Serialized wrapped DEK")
    binding: bytes = Field(..., description="Policy binding over policy || wrapped key")
    nonce: bytes = Field(..., description="Payload AES-GCM nonce")
    ciphertext: bytes = Field(..., description="Encrypted payload")
    tag: bytes = Field(..., description="Payload AES-GCM tag")

    @model_validator(mode="after")
    def _within_bounds(self) -> "Envelope":
        check_envelope_bounds(self)
        return self

    @property
    def binding_mode_tag(self) -> int:
        return binding_mode_of(self.policy_bytes)

    @property
    def policy(self) -> PolicyDescriptor:
        """Decoded policy. Only trust it after the binding has been verified."""
        return deserialize_policy(self.policy_bytes)

    @property
    def wrapped_key(self) -> WrappedKey:
        return WrappedKey.from_bytes(self.wrapped_key_bytes)

    def to_bytes(self) -> bytes:
        return serialize_envelope(self)


def _uint24(value: int) -> bytes:
    return value.to_bytes(3, "big")


def serialize_envelope(envelope: Envelope) -> bytes:
    kas_body = envelope.kas.body.encode("utf-8")
    if len(kas_body) > MAX_KAS_BODY:
        raise ValueError("KAS locator body exceeds 255 bytes")
    if len(envelope.policy_bytes) > MAX_POLICY_SIZE:
        raise ValueError("Policy exceeds 65535 bytes")
    if len(envelope.wrapped_key_bytes) > MAX_WRAPPED_KEY_SIZE:
        raise ValueError("Wrapped key exceeds the nano size bound")
    if len(envelope.binding) > MAX_BINDING_SIZE:
        raise ValueError("Binding exceeds the nano size bound")
    if len(envelope.nonce) != NONCE_SIZE or len(envelope.tag) != TAG_SIZE:
        raise ValueError("Payload nonce/tag have unexpected sizes")
    if len(envelope.ciphertext) > MAX_CIPHERTEXT_SIZE:
        raise ValueError(f"Payload exceeds {MAX_CIPHERTEXT_SIZE} bytes; NanoTDF is for small payloads")

    return b"".join([
        MAGIC,
        _U8.pack(envelope.version),
        _U8.pack(int(envelope.kas.protocol)),
        _U8.pack(len(kas_body)),
        kas_body,
        _U16.pack(len(envelope.policy_bytes)),
        envelope.policy_bytes,
        _U16.pack(len(envelope.wrapped_key_bytes)),
        envelope.wrapped_key_bytes,
        _U16.pack(len(envelope.binding)),
        envelope.binding,
        _uint24(NONCE_SIZE + len(envelope.ciphertext) + TAG_SIZE),
        envelope.nonce,
        envelope.ciphertext,
        envelope.tag,
    ])


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, length: int, what: str) -> bytes:
        end = self.offset + length
        if end > len(self.data):
            raise MalformedEnvelope(
                f"Envelope truncated while reading {what}",
                details={"offset": self.offset, "needed": length, "available": len(self.data) - self.offset},
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def uint(self, width: int, what: str) -> int:
        return int.from_bytes(self.take(width, what), "big")

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset


def _bounded(length: int, minimum: int, maximum: int, what: str) -> int:
    if length < minimum or length > maximum:
        raise MalformedEnvelope(
            f"{what} length {length} outside [{minimum}, {maximum}]",
            details={"field": what, "length": length},
        )
    return length


def check_envelope_bounds(envelope: Envelope) -> None:
    """The structural limits parse_envelope enforces, applied to an Envelope built in code."""
    if envelope.version not in SUPPORTED_VERSIONS:
        raise MalformedEnvelope(
            f"Unsupported NanoTDF version 0x{envelope.version:02x}", details={"version": envelope.version}
        )
    _bounded(len(envelope.policy_bytes), MIN_POLICY_SIZE, MAX_POLICY_SIZE, "policy")
    _bounded(len(envelope.wrapped_key_bytes), 1, MAX_WRAPPED_KEY_SIZE, "wrapped key")
    _bounded(len(envelope.binding), 1, MAX_BINDING_SIZE, "binding")
    _bounded(len(envelope.nonce), NONCE_SIZE, NONCE_SIZE, "nonce")
    _bounded(len(envelope.tag), TAG_SIZE, TAG_SIZE, "tag")
    _bounded(len(envelope.ciphertext), 0, MAX_CIPHERTEXT_SIZE, "ciphertext")


def parse_envelope(data: bytes) -> Envelope:
    """Structural parse only; no cryptographic routine runs here."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedEnvelope("Envelope must be bytes", details={"type": type(data).__name__})
    reader = _Reader(bytes(data))

    if reader.take(len(MAGIC), "magic") != MAGIC:
        raise MalformedEnvelope("Not a NanoTDF: bad magic")
    version = reader.uint(1, "version")
    if version not in SUPPORTED_VERSIONS:
        raise MalformedEnvelope(f"Unsupported NanoTDF version 0x{version:02x}", details={"version": version})

    protocol_tag = reader.uint(1, "kas protocol")
    try:
        protocol = KasProtocol(protocol_tag)
    except ValueError as protocol_error:
        raise MalformedEnvelope(f"Unknown KAS protocol 0x{protocol_tag:02x}") from protocol_error
    kas_body = reader.take(_bounded(reader.uint(1, "kas length"), 1, MAX_KAS_BODY, "kas"), "kas body")
    try:
        kas = parse_kas_locator(f"{protocol.name.lower()}://{kas_body.decode('utf-8')}")
    except (UnicodeDecodeError, InvalidKasLocator) as kas_error:
        raise MalformedEnvelope("KAS locator in header is invalid") from kas_error

    policy_bytes = reader.take(
        _bounded(reader.uint(2, "policy length"), MIN_POLICY_SIZE, MAX_POLICY_SIZE, "policy"), "policy"
    )
    wrapped_key_bytes = reader.take(
        _bounded(reader.uint(2, "wrapped key length"), 1, MAX_WRAPPED_KEY_SIZE, "wrapped key"), "wrapped key"
    )
    binding = reader.take(_bounded(reader.uint(2, "binding length"), 1, MAX_BINDING_SIZE, "binding"), "binding")

    payload_length = _bounded(reader.uint(3, "payload length"), NONCE_SIZE + TAG_SIZE, MAX_PAYLOAD_SIZE, "payload")
    nonce = reader.take(NONCE_SIZE, "nonce")
    ciphertext = reader.take(payload_length - NONCE_SIZE - TAG_SIZE, "ciphertext")
    tag = reader.take(TAG_SIZE, "tag")
    if reader.remaining:
        raise MalformedEnvelope("Trailing bytes after envelope", details={"extra": reader.remaining})

    return Envelope(
        version=version,
        kas=kas,
        policy_bytes=policy_bytes,
        wrapped_key_bytes=wrapped_key_bytes,
        binding=binding,
        nonce=nonce,
        ciphertext=ciphertext,
        tag=tag,
    )
