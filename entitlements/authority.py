# --- File: entitlements/authority.py ---
"""
Sources of subject-mapping policy. The policy authority is external; this
module only fetches what it publishes and turns every way of failing to get it
into ResolutionUnavailable.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

import requests
from pydantic import ValidationError

from errors import InvalidAttributeFormat, ResolutionUnavailable
from .models import BooleanOperator, Condition, ConditionGroup, ConditionOperator, SubjectMapping

logger = logging.getLogger(__name__)

LIST_SUBJECT_MAPPINGS_PATH = "/policy.subjectmapping.SubjectMappingService/ListSubjectMappings"

_OPERATORS = {
    "SUBJECT_MAPPING_OPERATOR_ENUM_IN": ConditionOperator.IN,
    "SUBJECT_MAPPING_OPERATOR_ENUM_NOT_IN": ConditionOperator.NOT_IN,
    "SUBJECT_MAPPING_OPERATOR_ENUM_IN_CONTAINS": ConditionOperator.IN_CONTAINS,
}
_BOOLEANS = {
    "CONDITION_BOOLEAN_TYPE_ENUM_AND": BooleanOperator.AND,
    "CONDITION_BOOLEAN_TYPE_ENUM_OR": BooleanOperator.OR,
}


class SubjectMappingSource(Protocol):
    def list_subject_mappings(self) -> List[SubjectMapping]: ...


class StaticSubjectMappingSource:
    """In-memory mappings, for tests and for callers that load policy themselves."""

    def __init__(self, mappings: Iterable[SubjectMapping]):
        self.mappings = list(mappings)

    def list_subject_mappings(self) -> List[SubjectMapping]:
        return list(self.mappings)


def _parse_subject_mapping(raw: Dict[str, Any]) -> SubjectMapping:
    groups = []
    for subject_set in raw["subjectConditionSet"]["subjectSets"]:
        for raw_group in subject_set["conditionGroups"]:
            conditions = tuple(
                Condition(
                    selector=raw_condition["subjectExternalSelectorValue"],
                    operator=_OPERATORS[raw_condition["operator"]],
                    values=tuple(raw_condition["subjectExternalValues"]),
                )
                for raw_condition in raw_group["conditions"]
            )
            groups.append(ConditionGroup(operator=_BOOLEANS[raw_group["booleanOperator"]], conditions=conditions))
    return SubjectMapping(
        mapping_id=raw.get("id"),
        attribute_value=raw["attributeValue"]["fqn"],
        condition_groups=tuple(groups),
    )


class PlatformSubjectMappingSource:
    """
    Lists subject mappings from the platform's policy service over its
    Connect/JSON interface. Every request is bounded by `timeout` and a whole
    listing, all pages included, by `total_timeout` (three request timeouts
    unless given).
    """
    def __init__(
        self,
        platform_endpoint: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        token_provider: Optional[Callable[[], str]] = None,
        max_pages: int = 100,
        total_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not platform_endpoint.startswith(("http://", "https://")):
            raise ValueError(f"Platform endpoint '{platform_endpoint}' must include a scheme")
        self.base_url = platform_endpoint.rstrip("/")
        self.timeout = timeout
        self.total_timeout = total_timeout if total_timeout is not None else 3 * timeout
        self.session = session or requests.Session()
        self.token_provider = token_provider
        self.max_pages = max_pages
        self._clock = clock

    def _post(self, body: Dict[str, Any], deadline: float) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {self.token_provider()}"
        url = self.base_url + LIST_SUBJECT_MAPPINGS_PATH
        remaining = deadline - self._clock()
        if remaining <= 0:
            logger.warning(f"Subject mapping listing exceeded {self.total_timeout}s: {url}")
            raise ResolutionUnavailable(
                "Policy authority did not finish the listing in time",
                details={"url": url, "total_timeout": self.total_timeout},
            )
        try:
            response = self.session.post(url, json=body, headers=headers, timeout=min(self.timeout, remaining))
            response.raise_for_status()
            return response.json()
        except requests.Timeout as timeout_error:
            logger.warning(f"Policy authority timed out after {self.timeout}s: {url}")
            raise ResolutionUnavailable(
                "Policy authority timed out", details={"url": url, "timeout": self.timeout}
            ) from timeout_error
        except requests.RequestException as request_error:
            logger.warning(f"Policy authority request failed: {request_error}")
            raise ResolutionUnavailable(
                f"Policy authority unreachable: {request_error}", details={"url": url}
            ) from request_error
        except ValueError as decode_error:
            raise ResolutionUnavailable("Policy authority returned a non-JSON body", details={"url": url}) from decode_error

    def list_subject_mappings(self) -> List[SubjectMapping]:
        mappings: List[SubjectMapping] = []
        body: Dict[str, Any] = {}
        deadline = self._clock() + self.total_timeout
        for _ in range(self.max_pages):
            payload = self._post(body, deadline)
            try:
                mappings.extend(_parse_subject_mapping(raw) for raw in payload.get("subjectMappings", []))
                next_offset = int((payload.get("pagination") or {}).get("nextOffset") or 0)
            except (KeyError, TypeError, ValueError, ValidationError, InvalidAttributeFormat) as shape_error:
                raise ResolutionUnavailable(
                    f"Policy authority returned an unusable subject mapping: {shape_error}"
                ) from shape_error
            if not next_offset:
                logger.debug(f"Fetched {len(mappings)} subject mapping(s) from {self.base_url}")
                return mappings
            body = {"pagination": {"offset": next_offset}}
        raise ResolutionUnavailable(
            f"Subject mapping listing did not finish within {self.max_pages} pages",
            details={"fetched": len(mappings)},
        )


class CachingSubjectMappingSource:
    """
    Short-lived cache in front of another source. Entries expire after
    `ttl_seconds` and `invalidate()` drops them at once, e.g. when the policy
    authority signals a change. Failures are never cached.
    """
    def __init__(self, source: SubjectMappingSource, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive; stale entitlements are a security defect")
        self.source = source
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._mappings: Optional[List[SubjectMapping]] = None
        self._expires_at = 0.0
        self._generation = 0  # bumped by invalidate(); fetches started earlier are not stored

    def invalidate(self) -> None:
        with self._lock:
            self._mappings = None
            self._expires_at = 0.0
            self._generation += 1
        logger.info("Subject mapping cache invalidated.")

    def list_subject_mappings(self) -> List[SubjectMapping]:
        with self._lock:
            if self._mappings is not None and self._clock() < self._expires_at:
                return list(self._mappings)
            generation = self._generation
        mappings = self.source.list_subject_mappings()
        with self._lock:
            if generation == self._generation:
                self._mappings = list(mappings)
                self._expires_at = self._clock() + self.ttl_seconds
            else:
                logger.info("Cache invalidated during fetch; result not cached.")
        return list(mappings)
