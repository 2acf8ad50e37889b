"""Purge ordering over declared collection dependencies."""

import structlog

from custodian.retention.sources import DataSourceRegistry
from custodian.retention.types import PurgeJob

logger = structlog.get_logger(__name__)


class DependencyResolver:
    """Orders jobs so dependent (child) collections are purged before parents.

    A cycle never hangs ordering: a collection met again while it is still
    being visited counts as satisfied, and the cycle is logged.
    """

    def __init__(self, sources: DataSourceRegistry):
        self.sources = sources

    def graph(self, jobs: list[PurgeJob]) -> dict[str, list[str]]:
        """Adjacency map from each job's collection to its dependents that also have jobs."""
        collections = {job.collection for job in jobs}
        return {
            job.collection: [
                dep for dep in self.sources.dependents_of(job.collection) if dep in collections
            ]
            for job in jobs
        }

    def order(self, jobs: list[PurgeJob]) -> list[PurgeJob]:
        """Depth-first topological sort of jobs, dependents first.

        Jobs on the same collection keep their relative order.
        """
        by_collection: dict[str, list[PurgeJob]] = {}
        for job in jobs:
            by_collection.setdefault(job.collection, []).append(job)

        ordered: list[PurgeJob] = []
        for collection in self.order_collections(list(by_collection)):
            ordered.extend(by_collection[collection])
        return ordered

    def order_collections(self, collections: list[str]) -> list[str]:
        """Depth-first topological sort of collection names, dependents first."""
        present = set(collections)
        ordered: list[str] = []
        visited: set[str] = set()
        visiting: set[str] = set()

        def visit(collection: str) -> None:
            if collection in visited:
                return
            if collection in visiting:
                logger.warning("purge_dependency_cycle", collection=collection)
                return
            visiting.add(collection)
            for dep in self.sources.dependents_of(collection):
                if dep in present:
                    visit(dep)
            visiting.discard(collection)
            visited.add(collection)
            ordered.append(collection)

        for collection in collections:
            visit(collection)
        return ordered
