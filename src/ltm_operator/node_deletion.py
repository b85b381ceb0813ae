"""Dependency-aware node deletion.

The device refuses to delete a node while a pool member still points at
it, answering with an error such as:

    01070110:3: Node address '/Common/10.0.0.1' is referenced by a member
    of pool '/Common/web'.

NodeDeleter treats that answer as recoverable: it extracts the blocking
pool, removes that pool's memberships for the node and retries. Any
other failure is returned to the caller unchanged.

STATE MACHINE (per delete):
- Attempting: delete-node; success ends, non-conflict errors are raised
- Remediating: list the blocking pool, remove ``<node>:*`` members,
  then back to Attempting
- Stalled: the conflict is still reported after max_attempts delete-node
  calls, NodeDeletionStalledError is raised
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import NamedTuple

from .client import ResourceNotFoundError, StateStore, StoreError
from .config import DEFAULT_MAX_DELETE_ATTEMPTS, MIN_DELETE_ATTEMPTS
from .models import DEFAULT_PARTITION, normalize_partition

logger = logging.getLogger(__name__)

# Path of the blocking pool, e.g. '/Common/web' or '/Tenant/app/web'
REFERENCE_CONFLICT_PATTERN = re.compile(r"referenced by a member of pool '(/[^']+)'")
POOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class NodeDeletionError(Exception):
    """Raised when a node cannot be deleted."""

    pass


class NodeDeletionStalledError(NodeDeletionError):
    """Raised when pool references keep blocking deletion after every attempt."""

    def __init__(self, name: str, partition: str, attempts: int, blocking_pool: PoolReference) -> None:
        self.name = name
        self.partition = partition
        self.attempts = attempts
        self.blocking_pool = blocking_pool
        super().__init__(
            f"Node '/{partition}/{name}' is still referenced by pool "
            f"'{blocking_pool.path}' after {attempts} delete attempts"
        )


class PoolReference(NamedTuple):
    """A pool named by a reference-conflict error."""

    partition: str | None
    name: str

    @property
    def path(self) -> str:
        if self.partition:
            return f"/{self.partition}/{self.name}"
        return self.name


def extract_blocking_pool(message: str) -> PoolReference | None:
    """Extract the blocking pool from a node deletion error message.

    The pool name is the last segment of the quoted path and the
    partition is the first one. Intermediate folders are dropped: a pool
    at ``/Tenant/app1/web`` is looked up as ``~Tenant~web``, which a
    device that keeps pools in sub-folders answers with 404, and the
    deletion then fails with that error.

    Returns:
        The blocking pool, or None when the message is not a
        reference conflict or names no usable pool.
    """
    match = REFERENCE_CONFLICT_PATTERN.search(message)
    if match is None:
        return None

    segments = [segment for segment in match.group(1).split("/") if segment]
    if not segments or not POOL_NAME_PATTERN.match(segments[-1]):
        return None

    partition = segments[0] if len(segments) > 1 else None
    return PoolReference(partition=partition, name=segments[-1])


@dataclass
class DeletionReport:
    """What a node deletion did on the way to success."""

    name: str
    partition: str
    attempts: int = 0
    removed_members: list[tuple[str, str]] = field(default_factory=list)
    blocking_pools: list[PoolReference] = field(default_factory=list)


class NodeDeleter:
    """Deletes nodes, clearing pool memberships that block the delete.

    The number of delete-node calls is bounded by ``max_attempts`` so a
    device that keeps reporting the same pool (or another deleter racing
    on the same node) cannot keep the loop alive forever.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        max_attempts: int = DEFAULT_MAX_DELETE_ATTEMPTS,
        default_partition: str = DEFAULT_PARTITION,
    ) -> None:
        if max_attempts < MIN_DELETE_ATTEMPTS:
            raise ValueError(f"max_attempts must be at least {MIN_DELETE_ATTEMPTS}")
        self._store = store
        self._max_attempts = max_attempts
        self._default_partition = default_partition

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def delete(self, name: str, partition: str | None = None) -> DeletionReport:
        """Delete a node, removing blocking pool memberships as needed.

        Args:
            name: Node name.
            partition: Node partition (default partition when empty).

        Returns:
            DeletionReport describing attempts and removed memberships.

        Raises:
            StoreError: If the device fails for any reason other than a
                pool reference, or a membership listing/removal fails.
            NodeDeletionStalledError: If the reference conflict persists
                after ``max_attempts`` delete calls.
        """
        partition = normalize_partition(partition, self._default_partition)
        report = DeletionReport(name=name, partition=partition)

        logger.info("Deleting node", extra={"node": name, "partition": partition})

        while True:
            report.attempts += 1
            try:
                self._store.delete_node(name, partition)
            except StoreError as e:
                blocking = extract_blocking_pool(str(e))
                if blocking is None:
                    raise

                report.blocking_pools.append(blocking)
                if report.attempts >= self._max_attempts:
                    logger.error(
                        "Node deletion stalled on pool reference",
                        extra={
                            "node": name,
                            "partition": partition,
                            "pool": blocking.path,
                            "attempts": report.attempts,
                        },
                    )
                    raise NodeDeletionStalledError(name, partition, report.attempts, blocking) from e

                self._remove_references(name, partition, blocking, report)
                continue

            logger.info(
                "Node deleted",
                extra={
                    "node": name,
                    "partition": partition,
                    "attempts": report.attempts,
                    "members_removed": len(report.removed_members),
                },
            )
            return report

    def _remove_references(
        self,
        name: str,
        partition: str,
        blocking: PoolReference,
        report: DeletionReport,
    ) -> None:
        """Remove every member of the blocking pool that points at the node."""
        pool_partition = blocking.partition or partition
        prefix = f"{name}:"

        logger.info(
            "Removing node from pool",
            extra={"node": name, "pool": blocking.name, "partition": pool_partition},
        )

        members = self._store.pool_members(blocking.name, pool_partition)
        matching = [member for member in members if member.startswith(prefix)]

        if not matching:
            # Another deleter may have removed them already; the retry decides
            logger.warning(
                "No pool members reference node, retrying delete",
                extra={"node": name, "pool": blocking.name, "partition": pool_partition},
            )

        for member in matching:
            try:
                self._store.delete_pool_member(blocking.name, pool_partition, member)
            except ResourceNotFoundError:
                logger.info(
                    "Pool member already absent",
                    extra={"pool": blocking.name, "member": member},
                )
                continue
            report.removed_members.append((blocking.name, member))
