# entitlements/__init__.py
from .authority import (
    CachingSubjectMappingSource,
    PlatformSubjectMappingSource,
    StaticSubjectMappingSource,
    SubjectMappingSource,
)
from .models import (
    BooleanOperator,
    ChainCombination,
    Condition,
    ConditionGroup,
    ConditionOperator,
    Entitlements,
    Entity,
    EntityChain,
    SubjectMapping,
)
from .resolver import EntitlementResolver

__all__ = [
    "CachingSubjectMappingSource", "PlatformSubjectMappingSource", "StaticSubjectMappingSource",
    "SubjectMappingSource", "BooleanOperator", "ChainCombination", "Condition", "ConditionGroup",
    "ConditionOperator", "Entitlements", "Entity", "EntityChain", "SubjectMapping", "EntitlementResolver",
]
