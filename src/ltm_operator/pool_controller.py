"""Pool convergence.

A pool is converged in two steps because the device's create call only
accepts a name and partition:
1. Overwrite all attributes (NAT, SNAT, algorithm, monitor expression)
2. Diff membership against the desired set and issue one call per change

Membership changes are applied removals first, then additions, so a node
swapped for another at the same slot never collides. A failing call stops
convergence without undoing earlier calls; the next pass re-reads the
device and finishes the job.
"""

from __future__ import annotations

import logging

from .client import ResourceNotFoundError, StateStore, StoreError
from .models import DEFAULT_PARTITION, PoolAttributes, PoolState, normalize_partition
from .set_diff import SetDiff, reconcile_sets

logger = logging.getLogger(__name__)


class PoolController:
    """Creates, reads, converges and deletes LTM pools."""

    def __init__(self, store: StateStore, *, default_partition: str = DEFAULT_PARTITION) -> None:
        self._store = store
        self._default_partition = default_partition

    def _partition(self, partition: str | None) -> str:
        return normalize_partition(partition, self._default_partition)

    def converge(
        self,
        name: str,
        partition: str | None,
        attributes: PoolAttributes,
        members: frozenset[str] | set[str],
    ) -> SetDiff:
        """Converge a pool's attributes and membership onto the desired state.

        The attribute update is always issued; the device has no partial
        update, so it is a full overwrite.

        Args:
            name: Pool name.
            partition: Pool partition (default partition when empty).
            attributes: Desired attributes.
            members: Desired member references (``node:port``).

        Returns:
            The membership diff that was applied.

        Raises:
            StoreError: On the first failing call. Membership calls issued
                before the failure stay applied.
        """
        partition = self._partition(partition)

        self._store.modify_pool(name, partition, attributes.to_pool(name, partition))

        diff = self.plan(name, partition, members)

        for member in diff.sorted_removals():
            try:
                self._store.delete_pool_member(name, partition, member)
            except ResourceNotFoundError:
                logger.info("Pool member already absent", extra={"pool": name, "member": member})

        for member in diff.sorted_additions():
            self._store.add_pool_member(name, partition, member)

        logger.info(
            "Pool converged",
            extra={
                "pool": name,
                "partition": partition,
                "members_added": len(diff.to_add),
                "members_removed": len(diff.to_remove),
            },
        )
        return diff

    def plan(self, name: str, partition: str | None, members: frozenset[str] | set[str]) -> SetDiff:
        """Diff desired membership against the device without changing anything."""
        partition = self._partition(partition)
        current = self._store.pool_members(name, partition)
        return reconcile_sets(members, current)

    def read(self, name: str, partition: str | None) -> PoolState | None:
        """Read pool attributes and membership.

        Returns:
            Observed state, or None if the pool does not exist.
        """
        partition = self._partition(partition)

        logger.debug("Reading pool", extra={"pool": name, "partition": partition})

        pool = self._store.get_pool(name, partition)
        if pool is None:
            return None
        members = self._store.pool_members(name, partition)

        return PoolState(
            name=pool.name,
            partition=self._partition(pool.partition),
            attributes=PoolAttributes.from_pool(pool),
            members=frozenset(members),
        )

    def exists(self, name: str, partition: str | None) -> bool:
        return self._store.get_pool(name, self._partition(partition)) is not None

    def create(
        self,
        name: str,
        partition: str | None,
        attributes: PoolAttributes,
        members: frozenset[str] | set[str],
    ) -> PoolState:
        """Create a pool and converge it.

        If convergence fails the new pool is deleted again so no
        unconfigured pool is left behind, and the convergence error is
        raised.
        """
        partition = self._partition(partition)

        logger.info("Creating pool", extra={"pool": name, "partition": partition})
        self._store.create_pool(name, partition)

        try:
            self.converge(name, partition, attributes, members)
        except StoreError:
            try:
                self._store.delete_pool(name, partition)
            except StoreError as cleanup_error:
                logger.error(
                    "Failed to delete pool after convergence failure",
                    extra={"pool": name, "partition": partition, "error": str(cleanup_error)},
                )
            raise

        state = self.read(name, partition)
        if state is None:
            raise StoreError(f"Pool '/{partition}/{name}' not found after creation")
        return state

    def delete(self, name: str, partition: str | None) -> None:
        partition = self._partition(partition)
        logger.info("Deleting pool", extra={"pool": name, "partition": partition})
        self._store.delete_pool(name, partition)
