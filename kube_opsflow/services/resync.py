"""
Resource Sync - Cluster Inventory Reconciliation

A cluster watcher pushes resource changes as `upserts` and `deletes`. With
`is_resync` the upserts are the complete authoritative set: resources that
are new are inserted, changed ones updated, and anything previously known
but absent from the set is deleted.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ResourceRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    namespace: str = "_cluster"
    api_version: str = Field(..., alias="apiVersion")
    kind: str
    name: str


class ClusterResource(ResourceRef):
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")


def resource_key(resource: ResourceRef) -> str:
    """Pattern: {namespace}:{apiVersion}:{kind}:{name}"""
    return f"{resource.namespace}:{resource.api_version}:{resource.kind}:{resource.name}"


def has_resource_changed(existing: ClusterResource, incoming: ClusterResource) -> bool:
    # Dict equality ignores key order.
    return (
        existing.updated_at != incoming.updated_at
        or existing.labels != incoming.labels
        or existing.annotations != incoming.annotations
    )


@dataclass
class ResyncResult:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"inserted": self.inserted, "updated": self.updated, "deleted": self.deleted}


class ResourceRepository(ABC):
    """Storage for the known resource set (a vector collection in production)."""

    @abstractmethod
    def all(self) -> Dict[str, ClusterResource]:
        pass

    @abstractmethod
    def upsert(self, resource: ClusterResource) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass


class InMemoryResourceRepository(ResourceRepository):
    def __init__(self, resources: Optional[List[ClusterResource]] = None):
        self._lock = threading.Lock()
        self._resources: Dict[str, ClusterResource] = {
            resource_key(r): r for r in resources or []
        }

    def all(self) -> Dict[str, ClusterResource]:
        with self._lock:
            return dict(self._resources)

    def upsert(self, resource: ClusterResource) -> None:
        with self._lock:
            self._resources[resource_key(resource)] = resource

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._resources.pop(key, None) is not None


def diff_and_sync(repository: ResourceRepository, incoming: List[ClusterResource]) -> ResyncResult:
    """Full reconciliation of the repository against `incoming`."""
    existing = repository.all()
    wanted = {resource_key(r): r for r in incoming}
    result = ResyncResult()

    for key, resource in wanted.items():
        current = existing.get(key)
        if current is None:
            repository.upsert(resource)
            result.inserted += 1
        elif has_resource_changed(current, resource):
            repository.upsert(resource)
            result.updated += 1

    for key in existing.keys() - wanted.keys():
        if repository.delete(key):
            result.deleted += 1

    return result


class ResourceSyncService:
    def __init__(self, repository: ResourceRepository):
        self.repository = repository

    def sync(
        self,
        upserts: List[ClusterResource],
        deletes: Optional[List[ResourceRef]] = None,
        is_resync: bool = False,
    ) -> Dict[str, object]:
        if is_resync and upserts:
            diff = diff_and_sync(self.repository, upserts)
            logger.info(
                f"Resync diff completed: inserted={diff.inserted} updated={diff.updated} deleted={diff.deleted}"
            )
            return {
                "upserted": diff.inserted + diff.updated,
                "deleted": diff.deleted,
                "resync": diff.to_dict(),
            }

        for resource in upserts:
            self.repository.upsert(resource)
        deleted = 0
        for ref in deletes or []:
            if self.repository.delete(resource_key(ref)):
                deleted += 1
            else:
                logger.debug(f"Delete of unknown resource {resource_key(ref)} ignored")
        logger.info(f"Incremental sync: upserted={len(upserts)} deleted={deleted}")
        return {"upserted": len(upserts), "deleted": deleted}
