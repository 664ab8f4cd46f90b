# nanotdf/__init__.py
from .attributes import Attribute, normalize_attributes, parse_attribute
from .envelope import Envelope, parse_envelope, serialize_envelope
from .kas import KasLocator, KasPublicKeyClient, kas_url_from_platform, parse_kas_locator
from .key_manager import LocalKasKeyStore
from .policy import PolicyDescriptor, PolicyRule, build_policy, deserialize_policy, serialize_policy
from .tdf_client import TDFClient, create_envelope, open_envelope

__all__ = [
    "Attribute", "parse_attribute", "normalize_attributes",
    "Envelope", "parse_envelope", "serialize_envelope",
    "KasLocator", "KasPublicKeyClient", "kas_url_from_platform", "parse_kas_locator",
    "LocalKasKeyStore",
    "PolicyDescriptor", "PolicyRule", "build_policy", "serialize_policy", "deserialize_policy",
    "TDFClient", "create_envelope", "open_envelope",
]
