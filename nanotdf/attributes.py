# --- File: nanotdf/attributes.py ---
import re
from typing import Iterable, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from errors import InvalidAttributeFormat

# https://<namespace>/attr/<name>/value/<value>
ATTRIBUTE_FQN_PATTERN = re.compile(
    r"^(?P<scheme>https?)://(?P<namespace>[^/\s]+)/attr/(?P<name>[^/\s]+)/value/(?P<value>[^/\s]+)$",
    re.IGNORECASE,
)
MAX_ATTRIBUTE_LENGTH = 2048


class Attribute(BaseModel):
    """A fully-qualified attribute value. FQNs are case-insensitive and stored lower-cased."""
    model_config = ConfigDict(frozen=True)

    namespace: str = Field(..., description="Namespace host, e.g. example.org")
    name: str = Field(..., description="Attribute definition name, e.g. classification")
    value: str = Field(..., description="Attribute value, e.g. secret")
    scheme: str = Field(default="https", description="URI scheme of the namespace")

    @property
    def fqn(self) -> str:
        return f"{self.scheme}://{self.namespace}/attr/{self.name}/value/{self.value}"

    def __str__(self) -> str:
        return self.fqn


AttributeLike = Union[str, Attribute]


def parse_attribute(fqn: str) -> Attribute:
    """Parses an attribute FQN. Raises InvalidAttributeFormat on anything else."""
    if not isinstance(fqn, str):
        raise InvalidAttributeFormat("Attribute identifier must be a string", details={"type": type(fqn).__name__})
    candidate = fqn.strip()
    if len(candidate) > MAX_ATTRIBUTE_LENGTH:
        raise InvalidAttributeFormat("Attribute identifier is too long", details={"length": len(candidate)})
    match = ATTRIBUTE_FQN_PATTERN.match(candidate)
    if not match:
        raise InvalidAttributeFormat(
            f"'{fqn}' is not of the form https://<namespace>/attr/<name>/value/<value>",
            details={"attribute": fqn},
        )
    return Attribute(
        scheme=match.group("scheme").lower(),
        namespace=match.group("namespace").lower(),
        name=match.group("name").lower(),
        value=match.group("value").lower(),
    )


def normalize_attributes(attributes: Iterable[AttributeLike]) -> Tuple[Attribute, ...]:
    """Parses every entry and collapses duplicates, keeping first-seen order."""
    seen = {}
    for item in attributes:
        attribute = item if isinstance(item, Attribute) else parse_attribute(item)
        seen.setdefault(attribute.fqn, attribute)
    return tuple(seen.values())
