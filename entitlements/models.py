# --- File: entitlements/models.py ---
from datetime import datetime, timezone
from types import MappingProxyType
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nanotdf.attributes import parse_attribute

# --- Entities ---

class Entity(BaseModel):
    """One identity claim for a requester plus a per-request identifier."""
    model_config = ConfigDict(frozen=True)

    ephemeral_id: str = Field(..., min_length=1, description="Per-request identifier, keys the entitlements map")
    email_address: Optional[str] = Field(None, description="E-mail address claim")
    user_name: Optional[str] = Field(None, description="User name claim")
    client_id: Optional[str] = Field(None, description="OAuth client id claim (service entities)")

    @model_validator(mode="after")
    def _exactly_one_claim(self) -> "Entity":
        present = [v for v in (self.email_address, self.user_name, self.client_id) if v]
        if len(present) != 1:
            raise ValueError("An entity carries exactly one of email_address, user_name or client_id")
        return self

    @property
    def entity_type(self) -> str:
        if self.email_address:
            return "emailAddress"
        if self.user_name:
            return "userName"
        return "clientId"

    def claims(self) -> Dict[str, str]:
        """Flat claim map addressed by subject-mapping selectors."""
        claims = {".entityType": self.entity_type}
        if self.email_address:
            claims[".emailAddress"] = self.email_address
            if "@" in self.email_address:
                claims[".emailDomain"] = self.email_address.rsplit("@", 1)[1]
        if self.user_name:
            claims[".userName"] = self.user_name
        if self.client_id:
            claims[".clientId"] = self.client_id
        return claims


class EntityChain(BaseModel):
    """Ordered entities that together form one requester (e.g. service on behalf of user)."""
    model_config = ConfigDict(frozen=True)

    entities: Tuple[Entity, ...] = Field(..., min_length=1)
    ephemeral_id: Optional[str] = Field(None, description="Identifier for the chain as a whole")

    @field_validator("entities")
    @classmethod
    def _unique_ids(cls, entities: Tuple[Entity, ...]) -> Tuple[Entity, ...]:
        ids = [entity.ephemeral_id for entity in entities]
        if len(ids) != len(set(ids)):
            raise ValueError("Entity ephemeral ids must be unique within a chain")
        return entities


# --- Subject mappings ---

class ConditionOperator(str, Enum):
    IN = "IN"
    NOT_IN = "NOT_IN"
    IN_CONTAINS = "IN_CONTAINS"


class BooleanOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class Condition(BaseModel):
    """Compares one entity claim to a list of values. Comparison is case-insensitive."""
    model_config = ConfigDict(frozen=True)

    selector: str = Field(..., description="Claim selector, e.g. .emailDomain")
    operator: ConditionOperator
    values: Tuple[str, ...] = Field(..., min_length=1)

    def matches(self, claims: Dict[str, str]) -> bool:
        claim = claims.get(self.selector)
        if claim is None:
            # An absent claim is never IN anything.
            return self.operator == ConditionOperator.NOT_IN
        claim = claim.casefold()
        values = [value.casefold() for value in self.values]
        if self.operator == ConditionOperator.IN:
            return claim in values
        if self.operator == ConditionOperator.NOT_IN:
            return claim not in values
        return any(value in claim for value in values)


class ConditionGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    operator: BooleanOperator = BooleanOperator.AND
    conditions: Tuple[Condition, ...] = Field(..., min_length=1)

    def matches(self, claims: Dict[str, str]) -> bool:
        results = (condition.matches(claims) for condition in self.conditions)
        return all(results) if self.operator == BooleanOperator.AND else any(results)


class SubjectMapping(BaseModel):
    """Grants one attribute value to every entity whose claims satisfy all condition groups."""
    model_config = ConfigDict(frozen=True)

    attribute_value: str = Field(..., description="Attribute FQN granted by this mapping")
    condition_groups: Tuple[ConditionGroup, ...] = Field(..., min_length=1)
    mapping_id: Optional[str] = None

    @field_validator("attribute_value")
    @classmethod
    def _normalize_fqn(cls, value: str) -> str:
        return parse_attribute(value).fqn

    def applies_to(self, claims: Dict[str, str]) -> bool:
        return all(group.matches(claims) for group in self.condition_groups)


# --- Results ---

class ChainCombination(str, Enum):
    """How per-entity grants combine into the chain's effective entitlements."""
    INTERSECTION = "intersection"  # every entity in the chain must hold the attribute
    UNION = "union"                # any entity in the chain holding it is enough


class Entitlements(BaseModel):
    """
    Resolution result. Valid only for the authorization check in progress;
    do not keep it around as a cache.
    """
    model_config = ConfigDict(frozen=True)

    by_entity: Mapping[str, FrozenSet[str]]
    combination: ChainCombination
    resolved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("by_entity")
    @classmethod
    def _read_only(cls, by_entity: Mapping[str, FrozenSet[str]]) -> Mapping[str, FrozenSet[str]]:
        return MappingProxyType(dict(by_entity))

    @property
    def effective(self) -> FrozenSet[str]:
        grants: List[FrozenSet[str]] = list(self.by_entity.values())
        if not grants:
            return frozenset()
        if self.combination == ChainCombination.UNION:
            return frozenset().union(*grants)
        return frozenset.intersection(*grants)

    def for_entity(self, ephemeral_id: str) -> FrozenSet[str]:
        return self.by_entity.get(ephemeral_id, frozenset())

    def satisfies(self, policy) -> bool:
        """True when the chain's effective entitlements meet a PolicyDescriptor."""
        return policy.is_satisfied_by(self.effective)
