# --- File: nanotdf/policy.py ---
"""
Policy descriptor: the attribute set an envelope is bound to.

Serialized layout (big-endian):
    binding mode (1) | rule (1) | policy uuid (16) |
    attribute count (2) | { length (2) | utf-8 fqn }* |
    dissemination count (2) | { length (2) | utf-8 address }*
The binding mode tag sits at offset 0 so a verifier can pick its path
without decoding anything it has not authenticated yet.
"""
import logging
import struct
import uuid
from enum import IntEnum
from typing import Iterable, Tuple

from pydantic import BaseModel, ConfigDict, Field

from errors import InvalidAttributeFormat, MalformedEnvelope
from tdf_crypto.policy_binding import BindingMode
from .attributes import Attribute, AttributeLike, normalize_attributes, parse_attribute

logger = logging.getLogger(__name__)

_FIXED_HEADER = struct.Struct("!BB16s")
_COUNT = struct.Struct("!H")
MIN_POLICY_SIZE = _FIXED_HEADER.size + 2 * _COUNT.size
MAX_ENTRIES = 0xFFFF


class PolicyRule(IntEnum):
    OPEN = 0     # no attributes required, deliberately open access
    ALL_OF = 1   # conjunction over all listed attributes
    ANY_OF = 2   # disjunction over the listed attributes


class PolicyDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    policy_id: uuid.UUID = Field(..., description="Fresh per envelope")
    binding_mode: BindingMode = Field(..., description="How the policy is bound to the wrapped key")
    rule: PolicyRule = Field(..., description="Boolean expression applied to the attributes")
    attributes: Tuple[Attribute, ...] = Field(default=(), description="Attribute values, duplicates collapsed")
    dissemination: Tuple[str, ...] = Field(default=(), description="Optional recipient address list")

    @property
    def is_open_access(self) -> bool:
        return self.rule == PolicyRule.OPEN

    @property
    def attribute_fqns(self) -> Tuple[str, ...]:
        return tuple(attribute.fqn for attribute in self.attributes)

    def is_satisfied_by(self, entitled_fqns: Iterable[str]) -> bool:
        """Evaluates the rule against a set of entitled attribute FQNs."""
        if self.rule == PolicyRule.OPEN:
            return True
        held = {fqn.lower() for fqn in entitled_fqns}
        required = set(self.attribute_fqns)
        if self.rule == PolicyRule.ALL_OF:
            return required <= held
        if self.rule == PolicyRule.ANY_OF:
            return bool(required & held)
        return False

    def allows_recipient(self, address: str) -> bool:
        """An empty dissemination list places no restriction on recipients."""
        if not self.dissemination:
            return True
        return address.lower() in self.dissemination


def build_policy(
    attributes: Iterable[AttributeLike],
    binding_mode: BindingMode = BindingMode.ECDSA,
    rule: PolicyRule = PolicyRule.ALL_OF,
    dissemination: Iterable[str] = (),
) -> PolicyDescriptor:
    """
    Builds a descriptor with a freshly generated policy UUID.

    An empty attribute set always yields an OPEN policy; callers that pass one
    are asking for open access. OPEN cannot be requested with attributes.
    """
    if isinstance(attributes, (str, Attribute)):
        attributes = [attributes]
    normalized = normalize_attributes(attributes)
    if not normalized:
        effective_rule = PolicyRule.OPEN
        logger.info("Building open-access policy (no attributes supplied).")
    elif rule == PolicyRule.OPEN:
        raise InvalidAttributeFormat(
            "An OPEN policy cannot carry attributes",
            details={"attributes": [a.fqn for a in normalized]},
        )
    else:
        effective_rule = PolicyRule(rule)
    return PolicyDescriptor(
        policy_id=uuid.uuid4(),
        binding_mode=BindingMode(binding_mode),
        rule=effective_rule,
        attributes=normalized,
        dissemination=tuple(dict.fromkeys(address.strip().lower() for address in dissemination)),
    )


def _pack_strings(values: Tuple[str, ...]) -> bytes:
    if len(values) > MAX_ENTRIES:
        raise ValueError(f"Too many policy entries: {len(values)}")
    chunks = [_COUNT.pack(len(values))]
    for value in values:
        encoded = value.encode("utf-8")
        if len(encoded) > 0xFFFF:
            raise ValueError("Policy entry exceeds 65535 bytes")
        chunks.append(_COUNT.pack(len(encoded)))
        chunks.append(encoded)
    return b"".join(chunks)


def serialize_policy(policy: PolicyDescriptor) -> bytes:
    header = _FIXED_HEADER.pack(int(policy.binding_mode), int(policy.rule), policy.policy_id.bytes)
    return header + _pack_strings(policy.attribute_fqns) + _pack_strings(policy.dissemination)


def _unpack_strings(data: bytes, offset: int) -> Tuple[Tuple[str, ...], int]:
    if offset + _COUNT.size > len(data):
        raise MalformedEnvelope("Policy truncated before entry count")
    (count,) = _COUNT.unpack_from(data, offset)
    offset += _COUNT.size
    values = []
    for _ in range(count):
        if offset + _COUNT.size > len(data):
            raise MalformedEnvelope("Policy truncated before entry length")
        (length,) = _COUNT.unpack_from(data, offset)
        offset += _COUNT.size
        if offset + length > len(data):
            raise MalformedEnvelope("Policy entry runs past the end of the policy")
        try:
            values.append(data[offset:offset + length].decode("utf-8"))
        except UnicodeDecodeError as decode_error:
            raise MalformedEnvelope("Policy entry is not valid UTF-8") from decode_error
        offset += length
    return tuple(values), offset


def deserialize_policy(data: bytes) -> PolicyDescriptor:
    if len(data) < MIN_POLICY_SIZE:
        raise MalformedEnvelope("Policy shorter than its fixed header", details={"length": len(data)})
    mode_tag, rule_tag, policy_uuid = _FIXED_HEADER.unpack_from(data, 0)
    try:
        binding_mode = BindingMode(mode_tag)
        rule = PolicyRule(rule_tag)
    except ValueError as tag_error:
        raise MalformedEnvelope(f"Unknown policy tag: {tag_error}") from tag_error

    fqns, offset = _unpack_strings(data, _FIXED_HEADER.size)
    dissemination, offset = _unpack_strings(data, offset)
    if offset != len(data):
        raise MalformedEnvelope("Trailing bytes after policy", details={"extra": len(data) - offset})
    try:
        attributes = tuple(parse_attribute(fqn) for fqn in fqns)
    except InvalidAttributeFormat as attribute_error:
        raise MalformedEnvelope(f"Policy carries an invalid attribute: {attribute_error.message}") from attribute_error
    if (rule == PolicyRule.OPEN) != (not attributes):
        raise MalformedEnvelope("Policy rule disagrees with its attribute list", details={"rule": rule.name})
    return PolicyDescriptor(
        policy_id=uuid.UUID(bytes=policy_uuid),
        binding_mode=binding_mode,
        rule=rule,
        attributes=attributes,
        dissemination=dissemination,
    )


def binding_mode_of(policy_bytes: bytes) -> int:
    """Raw binding mode tag. Unknown values are left for the verifier to reject."""
    if len(policy_bytes) < MIN_POLICY_SIZE:
        raise MalformedEnvelope("Policy shorter than its fixed header", details={"length": len(policy_bytes)})
    return policy_bytes[0]
