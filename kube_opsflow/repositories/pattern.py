import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..services.exceptions import InvalidField, MissingField
from ..state.models import utc_now

logger = logging.getLogger(__name__)

# Namespace for content-derived pattern ids
PATTERN_NAMESPACE = uuid.UUID("5b0f3c1e-8f2d-4c41-9d8e-3a6b0c7e2f10")


class Pattern(BaseModel):
    """An organizational deployment pattern captured by the pattern wizard."""

    id: str
    description: str
    triggers: List[str]
    suggested_resources: List[str]
    rationale: str
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)


def build_pattern(
    description: str,
    triggers: List[str],
    suggested_resources: List[str],
    rationale: str,
    created_by: str,
) -> Pattern:
    """
    Validates the collected answers and builds the Pattern.
    The id is derived from the content, so completing the same answers twice
    produces the same pattern.
    """
    errors = []
    if not description or not description.strip():
        errors.append("Pattern description is required")
    if not triggers:
        errors.append("At least one trigger is required")
    if not suggested_resources:
        errors.append("At least one suggested resource is required")
    if not rationale or not rationale.strip():
        errors.append("Pattern rationale is required")
    if not created_by or not created_by.strip():
        errors.append("Pattern creator is required")
    if errors:
        raise InvalidField("pattern", ", ".join(errors))

    fingerprint = "|".join(
        [description.strip(), ",".join(triggers), ",".join(suggested_resources), created_by.strip()]
    )
    return Pattern(
        id=str(uuid.uuid5(PATTERN_NAMESPACE, fingerprint)),
        description=description.strip(),
        triggers=triggers,
        suggested_resources=suggested_resources,
        rationale=rationale.strip(),
        created_by=created_by.strip(),
    )


class PatternRepository(ABC):
    """
    Where completed patterns go. Production deployments back this with the
    vector store; the orchestrator only needs save/get/list.
    """

    @abstractmethod
    def save(self, pattern: Pattern) -> Pattern:
        pass

    @abstractmethod
    def get(self, pattern_id: Optional[str]) -> Pattern:
        """
        Retrieves a pattern by ID.
        Raises MissingField/InvalidField if the id is empty or unknown.
        """
        pass

    @abstractmethod
    def list(self, limit: int = 50) -> List[Pattern]:
        pass


class InMemoryPatternRepository(PatternRepository):
    def __init__(self):
        self._patterns: Dict[str, Pattern] = {}
        self._lock = threading.Lock()

    def save(self, pattern: Pattern) -> Pattern:
        with self._lock:
            self._patterns[pattern.id] = pattern
        logger.info(f"Saved pattern {pattern.id} ({pattern.description})")
        return pattern

    def get(self, pattern_id: Optional[str]) -> Pattern:
        if not pattern_id:
            raise MissingField("Pattern ID")
        with self._lock:
            pattern = self._patterns.get(pattern_id)
        if pattern is None:
            raise InvalidField("Pattern ID", f"pattern '{pattern_id}' not found")
        return pattern

    def list(self, limit: int = 50) -> List[Pattern]:
        with self._lock:
            patterns = sorted(self._patterns.values(), key=lambda p: p.created_at, reverse=True)
        return patterns[:limit]
