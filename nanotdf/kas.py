# --- File: nanotdf/kas.py ---
import logging
from enum import IntEnum
from typing import Callable, Optional
from urllib.parse import urlparse

import requests
from Crypto.PublicKey import ECC
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from errors import InvalidKasLocator, KeyServiceUnavailable
from tdf_crypto.key_generation import load_ec_key

logger = logging.getLogger(__name__)

MAX_LOCATOR_BODY = 0xFF
KAS_PUBLIC_KEY_PATH = "/v2/kas_public_key"
KAS_KEY_ALGORITHM = "ec:secp256r1"


class KasProtocol(IntEnum):
    HTTP = 0
    HTTPS = 1


class KasLocator(BaseModel):
    """Scheme plus host/path of a key access service, as written into the header."""
    model_config = ConfigDict(frozen=True)

    protocol: KasProtocol = Field(..., description="URL scheme")
    body: str = Field(..., description="host[:port][/path] without the scheme")

    @field_validator("body")
    @classmethod
    def _normalize_body(cls, body: str) -> str:
        # Same form parse_kas_locator produces, so the header round-trips.
        body = body.strip().rstrip("/")
        if not body or "://" in body:
            raise ValueError("KAS locator body must be host[:port][/path] without a scheme")
        if len(body.encode("utf-8")) > MAX_LOCATOR_BODY:
            raise ValueError("KAS locator body exceeds 255 bytes")
        return body

    @property
    def url(self) -> str:
        return f"{self.protocol.name.lower()}://{self.body}"

    def __str__(self) -> str:
        return self.url


def parse_kas_locator(url: str) -> KasLocator:
    """
    Accepts only absolute http/https URLs. A bare host:port is ambiguous and is
    rejected here rather than guessed at; use kas_url_from_platform for that.
    """
    if isinstance(url, KasLocator):
        return url
    candidate = (url or "").strip()
    parsed = urlparse(candidate)
    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidKasLocator(
            f"KAS locator '{url}' must be an absolute http:// or https:// URL",
            details={"locator": url},
        )
    if parsed.query or parsed.fragment:
        raise InvalidKasLocator("KAS locator must not carry a query or fragment", details={"locator": url})
    body = parsed.netloc + parsed.path.rstrip("/")
    if len(body.encode("utf-8")) > MAX_LOCATOR_BODY:
        raise InvalidKasLocator("KAS locator exceeds 255 bytes", details={"locator": url})
    protocol = KasProtocol.HTTPS if scheme == "https" else KasProtocol.HTTP
    try:
        return KasLocator(protocol=protocol, body=body)
    except ValidationError as locator_error:
        raise InvalidKasLocator(f"KAS locator '{url}' is invalid", details={"locator": url}) from locator_error


def kas_url_from_platform(platform_endpoint: str) -> str:
    """Platform endpoint to KAS URL: default to http:// when no scheme is given, then append /kas."""
    endpoint = (platform_endpoint or "").strip().rstrip("/")
    if not endpoint:
        raise InvalidKasLocator("Platform endpoint is empty")
    if not endpoint.startswith("http://") and not endpoint.startswith("https://"):
        endpoint = "http://" + endpoint
    return endpoint + "/kas"


class KasPublicKeyClient:
    """Fetches a KAS's EC public key over HTTP."""

    def __init__(
        self,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        token_provider: Optional[Callable[[], str]] = None,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.token_provider = token_provider

    def get_public_key(self, kas_url: str) -> ECC.EccKey:
        locator = parse_kas_locator(kas_url)
        endpoint = locator.url + KAS_PUBLIC_KEY_PATH
        headers = {}
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {self.token_provider()}"

        logger.debug(f"Fetching KAS public key from {endpoint}")
        try:
            response = self.session.get(
                endpoint,
                params={"algorithm": KAS_KEY_ALGORITHM},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            pem = response.json()["publicKey"]
        except requests.Timeout as timeout_error:
            raise KeyServiceUnavailable(f"KAS at {locator.url} timed out", details={"timeout": self.timeout}) from timeout_error
        except requests.RequestException as request_error:
            raise KeyServiceUnavailable(f"KAS at {locator.url} is unreachable: {request_error}") from request_error
        except (ValueError, KeyError, TypeError) as body_error:
            raise KeyServiceUnavailable(f"KAS at {locator.url} returned an unusable key response") from body_error

        try:
            return load_ec_key(pem)
        except (ValueError, TypeError, IndexError) as key_error:
            raise KeyServiceUnavailable(f"KAS at {locator.url} returned an invalid EC key: {key_error}") from key_error
