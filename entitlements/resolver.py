# --- File: entitlements/resolver.py ---
import logging
from typing import Callable, Dict, FrozenSet, Optional

import config
from errors import ResolutionUnavailable
from .authority import CachingSubjectMappingSource, PlatformSubjectMappingSource, SubjectMappingSource
from .models import ChainCombination, Entitlements, Entity, EntityChain

logger = logging.getLogger(__name__)


class EntitlementResolver:
    """
    Resolves an entity chain into per-entity attribute grants by evaluating
    subject mappings from the policy authority.

    Chains combine with INTERSECTION by default: an attribute counts for the
    requester only when every entity in the chain holds it, matching the
    platform's per-entity authorization decisions. UNION is available for
    authorities that document the opposite.
    """
    def __init__(self, source: SubjectMappingSource, combination: ChainCombination = ChainCombination.INTERSECTION):
        self.source = source
        self.combination = ChainCombination(combination)

    def resolve(self, chain: EntityChain) -> Entitlements:
        try:
            mappings = self.source.list_subject_mappings()
        except ResolutionUnavailable:
            raise
        except OSError as transport_error:
            # Sockets and timeouts from custom sources are transient too.
            raise ResolutionUnavailable(f"Policy authority unavailable: {transport_error}") from transport_error

        by_entity: Dict[str, FrozenSet[str]] = {}
        for entity in chain.entities:
            claims = entity.claims()
            granted = frozenset(mapping.attribute_value for mapping in mappings if mapping.applies_to(claims))
            by_entity[entity.ephemeral_id] = granted
            logger.debug(f"Entity '{entity.ephemeral_id}' ({entity.entity_type}) holds {len(granted)} attribute(s).")

        entitlements = Entitlements(by_entity=by_entity, combination=self.combination)
        logger.info(
            f"Resolved entitlements for chain of {len(chain.entities)} entity(ies) against "
            f"{len(mappings)} mapping(s): {len(entitlements.effective)} effective ({self.combination.value})."
        )
        return entitlements

    def resolve_email(self, email_address: str, ephemeral_id: Optional[str] = None) -> Entitlements:
        """Single-entity chain for an e-mail identity."""
        entity = Entity(ephemeral_id=ephemeral_id or email_address, email_address=email_address)
        return self.resolve(EntityChain(entities=(entity,)))


def build_platform_resolver(
    token_provider: Optional[Callable[[], str]] = None,
    combination: ChainCombination = ChainCombination.INTERSECTION,
) -> EntitlementResolver:
    """Resolver wired to the configured platform, behind a short-lived mapping cache."""
    source = PlatformSubjectMappingSource(
        config.require_platform_endpoint(),
        timeout=config.HTTP_TIMEOUT_SECONDS,
        token_provider=token_provider,
    )
    return EntitlementResolver(
        CachingSubjectMappingSource(source, ttl_seconds=config.MAPPING_CACHE_TTL_SECONDS),
        combination=combination,
    )
