"""
Tests for KAS locators and the KAS public key client.
"""

from unittest.mock import Mock

import pytest
import requests
from pydantic import ValidationError

from errors import InvalidKasLocator, KeyServiceUnavailable
from nanotdf.kas import (
    KAS_KEY_ALGORITHM,
    KAS_PUBLIC_KEY_PATH,
    KasLocator,
    KasProtocol,
    KasPublicKeyClient,
    kas_url_from_platform,
    parse_kas_locator,
)

from conftest import KAS_URL


class TestKasLocator:

    def test_https_locator(self):
        locator = parse_kas_locator(KAS_URL)
        assert locator.protocol == KasProtocol.HTTPS
        assert locator.body == "kas.example.org/kas"
        assert locator.url == KAS_URL

    def test_http_with_port(self):
        locator = parse_kas_locator("http://localhost:8080/kas/")
        assert locator.protocol == KasProtocol.HTTP
        assert locator.body == "localhost:8080/kas"

    def test_direct_locator_is_normalized(self):
        locator = KasLocator(protocol=KasProtocol.HTTPS, body=" kas.example.org/kas/ ")
        assert locator.body == "kas.example.org/kas"
        assert parse_kas_locator(locator.url) == locator

    @pytest.mark.parametrize("body", ["", "/", "https://kas.example.org", "a" * 256])
    def test_direct_locator_rejects_bad_body(self, body):
        with pytest.raises(ValidationError):
            KasLocator(protocol=KasProtocol.HTTPS, body=body)

    def test_locator_passes_through(self):
        locator = KasLocator(protocol=KasProtocol.HTTPS, body="kas.example.org")
        assert parse_kas_locator(locator) is locator

    @pytest.mark.parametrize("bad", [
        "",
        "localhost:8080",
        "kas.example.org/kas",
        "ftp://kas.example.org",
        "https://",
        "https://kas.example.org/kas?key=1",
        "https://kas.example.org/kas#frag",
        "https://kas.example.org/a://b",
    ])
    def test_ambiguous_or_invalid_rejected(self, bad):
        with pytest.raises(InvalidKasLocator):
            parse_kas_locator(bad)

    def test_oversize_body_rejected(self):
        with pytest.raises(InvalidKasLocator):
            parse_kas_locator("https://kas.example.org/" + "a" * 256)


class TestPlatformKasUrl:

    def test_bare_endpoint_defaults_to_http(self):
        assert kas_url_from_platform("localhost:8080") == "http://localhost:8080/kas"

    def test_scheme_is_kept(self):
        assert kas_url_from_platform("https://platform.example.org/") == "https://platform.example.org/kas"

    def test_empty_endpoint_rejected(self):
        with pytest.raises(InvalidKasLocator):
            kas_url_from_platform("  ")


class TestKasPublicKeyClient:

    @pytest.fixture
    def session(self, kas_keypair):
        session = Mock()
        session.get.return_value.json.return_value = {
            "publicKey": kas_keypair[1].export_key(format="PEM"),
            "kid": "e1",
        }
        return session

    def test_fetches_public_key(self, session, kas_keypair):
        client = KasPublicKeyClient(timeout=2.0, session=session)
        assert client.get_public_key(KAS_URL) == kas_keypair[1]

        args, kwargs = session.get.call_args
        assert args[0] == KAS_URL + KAS_PUBLIC_KEY_PATH
        assert kwargs["params"] == {"algorithm": KAS_KEY_ALGORITHM}
        assert kwargs["timeout"] == 2.0
        assert "Authorization" not in kwargs["headers"]

    def test_sends_bearer_token(self, session):
        client = KasPublicKeyClient(session=session, token_provider=lambda: "tok")
        client.get_public_key(KAS_URL)
        assert session.get.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_timeout(self, session):
        session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(KeyServiceUnavailable) as exc_info:
            KasPublicKeyClient(session=session).get_public_key(KAS_URL)
        assert exc_info.value.retryable

    def test_connection_error(self, session):
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(KeyServiceUnavailable):
            KasPublicKeyClient(session=session).get_public_key(KAS_URL)

    def test_http_error(self, session):
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError("503")
        with pytest.raises(KeyServiceUnavailable):
            KasPublicKeyClient(session=session).get_public_key(KAS_URL)

    def test_missing_key_in_body(self, session):
        session.get.return_value.json.return_value = {}
        with pytest.raises(KeyServiceUnavailable):
            KasPublicKeyClient(session=session).get_public_key(KAS_URL)

    def test_invalid_key_in_body(self, session):
        session.get.return_value.json.return_value = {"publicKey": "not a key"}
        with pytest.raises(KeyServiceUnavailable):
            KasPublicKeyClient(session=session).get_public_key(KAS_URL)

    def test_bare_locator_never_hits_the_network(self, session):
        with pytest.raises(InvalidKasLocator):
            KasPublicKeyClient(session=session).get_public_key("kas.example.org:443")
        session.get.assert_not_called()
