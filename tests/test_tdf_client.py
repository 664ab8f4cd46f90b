"""
End-to-end tests for envelope creation and opening.
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from errors import (
    AuthenticationFailed,
    BindingMismatch,
    InvalidAttributeFormat,
    InvalidKasLocator,
    MalformedEnvelope,
    UnwrapFailed,
)
from nanotdf.envelope import VERSION, parse_envelope
from nanotdf.key_manager import LocalKasKeyStore
from nanotdf.policy import PolicyRule
from nanotdf.tdf_client import TDFClient, create_envelope, open_envelope
from tdf_crypto.key_generation import generate_ec_keypair
from tdf_crypto.policy_binding import BindingMode

from conftest import SECRET

PLAINTEXT = b"meet at the usual place"


def _flip(data: bytes, bit: int) -> bytes:
    flipped = bytearray(data)
    flipped[bit // 8] ^= 1 << (bit % 8)
    return bytes(flipped)


@pytest.fixture
def ecdsa_envelope(kas_url, kas_keypair, signer_keypair):
    return create_envelope(PLAINTEXT, [SECRET], kas_url, BindingMode.ECDSA, kas_keypair[1],
                           signing_key=signer_keypair[0])


@pytest.fixture
def hmac_envelope(kas_url, kas_keypair):
    return create_envelope(PLAINTEXT, [SECRET], kas_url, BindingMode.HMAC, kas_keypair[1])


class TestRoundTrip:

    def test_ecdsa(self, ecdsa_envelope, kas_keypair, signer_keypair):
        assert open_envelope(ecdsa_envelope, kas_keypair[0], verifying_key=signer_keypair[1]) == PLAINTEXT

    def test_hmac(self, hmac_envelope, kas_keypair):
        assert open_envelope(hmac_envelope, kas_keypair[0]) == PLAINTEXT

    def test_mode_by_name(self, kas_url, kas_keypair):
        data = create_envelope("text", [SECRET], kas_url, "hmac", kas_keypair[1])
        assert open_envelope(data, kas_keypair[0]) == b"text"

    def test_accepts_parsed_envelope(self, hmac_envelope, kas_keypair):
        assert open_envelope(parse_envelope(hmac_envelope), kas_keypair[0]) == PLAINTEXT

    def test_keys_as_pem(self, kas_url, kas_keypair):
        private, public = kas_keypair
        data = create_envelope(PLAINTEXT, [SECRET], kas_url, BindingMode.HMAC, public.export_key(format="PEM"))
        assert open_envelope(data, private.export_key(format="PEM")) == PLAINTEXT

    def test_empty_payload(self, kas_url, kas_keypair):
        data = create_envelope(b"", [SECRET], kas_url, BindingMode.HMAC, kas_keypair[1])
        assert open_envelope(data, kas_keypair[0]) == b""

    def test_each_envelope_is_unique(self, kas_url, kas_keypair):
        first = create_envelope(PLAINTEXT, [SECRET], kas_url, BindingMode.HMAC, kas_keypair[1])
        second = create_envelope(PLAINTEXT, [SECRET], kas_url, BindingMode.HMAC, kas_keypair[1])
        assert first != second
        assert parse_envelope(first).policy.policy_id != parse_envelope(second).policy.policy_id

    def test_open_access_is_visible_in_header(self, kas_url, kas_keypair):
        data = create_envelope(PLAINTEXT, [], kas_url, BindingMode.HMAC, kas_keypair[1])
        envelope = parse_envelope(data)
        assert envelope.policy.rule == PolicyRule.OPEN
        assert envelope.policy.is_open_access
        assert open_envelope(data, kas_keypair[0]) == PLAINTEXT

    def test_concurrent_use(self, kas_url, kas_keypair):
        def round_trip(index):
            message = f"message {index}".encode()
            data = create_envelope(message, [SECRET], kas_url, BindingMode.HMAC, kas_keypair[1])
            return open_envelope(data, kas_keypair[0]) == message

        with ThreadPoolExecutor(max_workers=8) as pool:
            assert all(pool.map(round_trip, range(32)))


class TestBindingIntegrity:

    @pytest.mark.parametrize("mode", [BindingMode.ECDSA, BindingMode.HMAC])
    def test_every_policy_bit_flip_is_a_binding_mismatch(self, mode, ecdsa_envelope, hmac_envelope,
                                                         kas_keypair, signer_keypair):
        envelope = parse_envelope(ecdsa_envelope if mode == BindingMode.ECDSA else hmac_envelope)
        for bit in range(len(envelope.policy_bytes) * 8):
            tampered = envelope.model_copy(update={"policy_bytes": _flip(envelope.policy_bytes, bit)})
            with pytest.raises(BindingMismatch):
                open_envelope(tampered, kas_keypair[0], verifying_key=signer_keypair[1])

    @pytest.mark.parametrize("mode", [BindingMode.ECDSA, BindingMode.HMAC])
    def test_every_wrapped_key_bit_flip_is_a_binding_mismatch(self, mode, ecdsa_envelope, hmac_envelope,
                                                              kas_keypair, signer_keypair):
        envelope = parse_envelope(ecdsa_envelope if mode == BindingMode.ECDSA else hmac_envelope)
        for bit in range(len(envelope.wrapped_key_bytes) * 8):
            tampered = envelope.model_copy(update={"wrapped_key_bytes": _flip(envelope.wrapped_key_bytes, bit)})
            with pytest.raises(BindingMismatch):
                open_envelope(tampered, kas_keypair[0], verifying_key=signer_keypair[1])

    def test_tampering_survives_serialization(self, ecdsa_envelope, kas_keypair, signer_keypair):
        envelope = parse_envelope(ecdsa_envelope)
        tampered = envelope.model_copy(update={"policy_bytes": _flip(envelope.policy_bytes, 200)})
        with pytest.raises(BindingMismatch):
            open_envelope(tampered.to_bytes(), kas_keypair[0], verifying_key=signer_keypair[1])

    def test_ecdsa_without_verifying_key_fails_closed(self, ecdsa_envelope, kas_keypair):
        with pytest.raises(BindingMismatch):
            open_envelope(ecdsa_envelope, kas_keypair[0])

    def test_ecdsa_with_other_signer_fails(self, ecdsa_envelope, kas_keypair):
        _, stranger = generate_ec_keypair()
        with pytest.raises(BindingMismatch):
            open_envelope(ecdsa_envelope, kas_keypair[0], verifying_key=stranger)

    def test_binding_checked_before_unwrap(self, ecdsa_envelope, kas_keypair):
        with patch("nanotdf.tdf_client.unwrap_key") as unwrap, patch("nanotdf.tdf_client.decrypt_payload") as decrypt:
            with pytest.raises(BindingMismatch):
                open_envelope(ecdsa_envelope, kas_keypair[0])
        unwrap.assert_not_called()
        decrypt.assert_not_called()


class TestOpenFailures:

    def test_unknown_version_runs_no_crypto(self, hmac_envelope, kas_keypair):
        data = bytearray(hmac_envelope)
        data[2] = VERSION + 1
        with patch("nanotdf.tdf_client.require_valid_binding") as verify, \
                patch("nanotdf.tdf_client.derive_binding_secret") as derive, \
                patch("nanotdf.tdf_client.unwrap_key") as unwrap, \
                patch("nanotdf.tdf_client.decrypt_payload") as decrypt:
            with pytest.raises(MalformedEnvelope):
                open_envelope(bytes(data), kas_keypair[0])
        for routine in (verify, derive, unwrap, decrypt):
            routine.assert_not_called()

    def test_wrong_kas_key_ecdsa(self, ecdsa_envelope, signer_keypair):
        wrong_private, _ = generate_ec_keypair()
        with pytest.raises(UnwrapFailed):
            open_envelope(ecdsa_envelope, wrong_private, verifying_key=signer_keypair[1])

    def test_wrong_kas_key_hmac(self, hmac_envelope):
        wrong_private, _ = generate_ec_keypair()
        with pytest.raises(BindingMismatch):
            open_envelope(hmac_envelope, wrong_private)

    def test_tampered_ciphertext(self, hmac_envelope, kas_keypair):
        envelope = parse_envelope(hmac_envelope)
        tampered = envelope.model_copy(update={"ciphertext": _flip(envelope.ciphertext, 0)})
        with pytest.raises(AuthenticationFailed):
            open_envelope(tampered, kas_keypair[0])

    def test_tampered_tag(self, hmac_envelope, kas_keypair):
        envelope = parse_envelope(hmac_envelope)
        tampered = envelope.model_copy(update={"tag": _flip(envelope.tag, 127)})
        with pytest.raises(AuthenticationFailed):
            open_envelope(tampered, kas_keypair[0])


class TestCreateFailures:

    def test_invalid_attribute(self, kas_url, kas_keypair):
        with pytest.raises(InvalidAttributeFormat):
            create_envelope(PLAINTEXT, ["classification=secret"], kas_url, BindingMode.HMAC, kas_keypair[1])

    def test_bare_kas_locator(self, kas_keypair):
        with pytest.raises(InvalidKasLocator):
            create_envelope(PLAINTEXT, [SECRET], "localhost:8080", BindingMode.HMAC, kas_keypair[1])

    def test_ecdsa_requires_signing_key(self, kas_url, kas_keypair):
        with pytest.raises(ValueError):
            create_envelope(PLAINTEXT, [SECRET], kas_url, BindingMode.ECDSA, kas_keypair[1])

    def test_unknown_binding_mode(self, kas_url, kas_keypair):
        with pytest.raises(ValueError):
            create_envelope(PLAINTEXT, [SECRET], kas_url, "gmac", kas_keypair[1])

    def test_open_rule_with_attributes(self, kas_url, kas_keypair):
        with pytest.raises(InvalidAttributeFormat):
            create_envelope(PLAINTEXT, [SECRET], kas_url, BindingMode.HMAC, kas_keypair[1], rule=PolicyRule.OPEN)


class TestTDFClient:

    @pytest.fixture
    def key_store(self, kas_url):
        return LocalKasKeyStore(None, kas_urls=[kas_url])

    def test_hmac_round_trip(self, key_store, kas_url):
        client = TDFClient(key_provider=key_store, kas_url=kas_url, binding_mode="hmac")
        data = client.encrypt(PLAINTEXT, [SECRET])
        assert parse_envelope(data).kas.url == kas_url
        assert client.decrypt(data) == PLAINTEXT

    def test_ecdsa_round_trip(self, key_store, kas_url, signer_keypair):
        client = TDFClient(key_provider=key_store, kas_url=kas_url, binding_mode="ecdsa",
                           signing_key=signer_keypair[0])
        data = client.encrypt(PLAINTEXT, [SECRET], rule=PolicyRule.ANY_OF)
        assert parse_envelope(data).policy.rule == PolicyRule.ANY_OF
        assert client.decrypt(data) == PLAINTEXT

    def test_per_call_binding_mode(self, key_store, kas_url):
        client = TDFClient(key_provider=key_store, kas_url=kas_url, binding_mode="ecdsa")
        data = client.encrypt(PLAINTEXT, [SECRET], binding_mode=BindingMode.HMAC)
        assert parse_envelope(data).binding_mode_tag == BindingMode.HMAC
        assert client.decrypt(data) == PLAINTEXT

    def test_explicit_kas_private_key(self, kas_url, kas_keypair):
        class FixedProvider:
            def get_public_key(self, url):
                return kas_keypair[1]

        client = TDFClient(key_provider=FixedProvider(), kas_url=kas_url, binding_mode="hmac")
        data = client.encrypt(PLAINTEXT, [SECRET])
        assert client.decrypt(data, kas_private_key=kas_keypair[0]) == PLAINTEXT
        with pytest.raises(ValueError):
            client.decrypt(data)
