# --- File: config.py ---
import os
from dotenv import load_dotenv
import logging

from errors import ConfigurationError

load_dotenv()

LOG_LEVEL_FROM_ENV = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, LOG_LEVEL_FROM_ENV, logging.INFO)

logging.basicConfig(
    level=numeric_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# --- Platform / KAS ---
# No defaults here: an envelope bound to a guessed KAS is worse than no envelope.
PLATFORM_ENDPOINT = os.getenv("OPENTDF_PLATFORM_ENDPOINT")
KAS_URL = os.getenv("OPENTDF_KAS_URL")

# --- Envelope Settings ---
BINDING_MODE = os.getenv("OPENTDF_BINDING_MODE", "ecdsa").lower()

# --- Network Settings ---
HTTP_TIMEOUT_SECONDS = float(os.getenv("OPENTDF_HTTP_TIMEOUT", "5.0"))

# --- Entitlement Settings ---
MAPPING_CACHE_TTL_SECONDS = float(os.getenv("OPENTDF_MAPPING_CACHE_TTL", "30"))

# --- Security Settings ---
KAS_KEYS_FILE = os.getenv("OPENTDF_KAS_KEYS_FILE", "kas_keys.json")


def require_platform_endpoint() -> str:
    """Returns the platform endpoint or raises if it was never configured."""
    if not PLATFORM_ENDPOINT:
        raise ConfigurationError(
            "OPENTDF_PLATFORM_ENDPOINT is not set",
            details={"variable": "OPENTDF_PLATFORM_ENDPOINT"},
        )
    return PLATFORM_ENDPOINT


def get_kas_url() -> str:
    """
    Returns the KAS URL. An explicit OPENTDF_KAS_URL wins; otherwise it is
    derived from the platform endpoint the way the platform deploys KAS.
    """
    if KAS_URL:
        return KAS_URL
    from nanotdf.kas import kas_url_from_platform
    return kas_url_from_platform(require_platform_endpoint())


# --- Basic Validation ---
if BINDING_MODE not in ("ecdsa", "hmac"):
    logger.warning(f"Unknown OPENTDF_BINDING_MODE '{BINDING_MODE}'. Envelope creation will reject it.")
if HTTP_TIMEOUT_SECONDS <= 0:
    logger.warning("OPENTDF_HTTP_TIMEOUT must be positive; network calls would never be bounded.")
if not PLATFORM_ENDPOINT and not KAS_URL:
    logger.info("Neither OPENTDF_PLATFORM_ENDPOINT nor OPENTDF_KAS_URL is set; callers must pass KAS locations explicitly.")
