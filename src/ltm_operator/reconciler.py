"""Declarative reconciliation of LTM nodes and pools.

One pass walks the declared state in dependency order:
1. Nodes: create missing ones, replace those whose address changed
2. Pools: create missing ones, converge the rest
3. Absent: delete listed pools, then listed nodes (clearing references)

Every read goes to the device; nothing is cached between passes. The
first failure stops the pass and is recorded on the result. Changes
already applied stay applied, and the next pass converges the rest.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from .client import StateStore, StoreError
from .config import Config
from .models import LtmSpec, PoolSpec, member_node_name
from .node_controller import NodeController
from .node_deletion import NodeDeleter, NodeDeletionError
from .pool_controller import PoolController
from .set_diff import reconcile_sets
from .spec_loader import SpecLoadError, load_spec

logger = logging.getLogger(__name__)

# Circuit breaker constants
MAX_CONSECUTIVE_FAILURES = 5
CIRCUIT_BREAKER_RESET_SECONDS = 300  # 5 minutes


class ActionType(str, Enum):
    """Changes a reconciliation pass can make."""

    CREATE_NODE = "create_node"
    REPLACE_NODE = "replace_node"
    DELETE_NODE = "delete_node"
    CREATE_POOL = "create_pool"
    CONVERGE_POOL = "converge_pool"
    DELETE_POOL = "delete_pool"


@dataclass(frozen=True)
class PlannedAction:
    """A change the pass decided on (and applied, unless dry run)."""

    action: ActionType
    resource: str
    detail: str = ""


@dataclass
class ReconcileResult:
    """Result of a single reconciliation pass."""

    dry_run: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    actions: list[PlannedAction] = field(default_factory=list)
    nodes_created: int = 0
    nodes_replaced: int = 0
    nodes_deleted: int = 0
    pools_created: int = 0
    pools_converged: int = 0
    pools_deleted: int = 0
    members_added: int = 0
    members_removed: int = 0
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


class MissingMemberNodeError(Exception):
    """Raised when a pool member would reference a node that does not exist."""

    def __init__(self, pool: str, members: list[str]) -> None:
        self.pool = pool
        self.members = members
        super().__init__(f"Pool '{pool}' members reference nodes that do not exist: {members}")


def _path(partition: str, name: str) -> str:
    return f"/{partition}/{name}"


class Reconciler:
    """Applies a declared LtmSpec to the device and runs the control loop."""

    def __init__(self, store: StateStore, config: Config) -> None:
        self._config = config
        self._store = store
        deleter = NodeDeleter(
            store,
            max_attempts=config.max_delete_attempts,
            default_partition=config.default_partition,
        )
        self._nodes = NodeController(store, deleter, default_partition=config.default_partition)
        self._pools = PoolController(store, default_partition=config.default_partition)

        self._shutdown_event = threading.Event()

        # Circuit breaker state
        self._consecutive_failures = 0
        self._circuit_open_until: datetime | None = None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def nodes(self) -> NodeController:
        return self._nodes

    @property
    def pools(self) -> PoolController:
        return self._pools

    def reconcile_once(self, spec: LtmSpec, *, dry_run: bool | None = None) -> ReconcileResult:
        """Run one pass over the declared state.

        Args:
            spec: Declared state.
            dry_run: Only read and record actions. Defaults to config.dry_run.

        Returns:
            ReconcileResult; ``error`` holds the failure that stopped the pass.
        """
        if dry_run is None:
            dry_run = self._config.dry_run
        result = ReconcileResult(dry_run=dry_run)

        try:
            self._reconcile_nodes(spec, result)
            self._reconcile_pools(spec, result)
            self._reconcile_absent(spec, result)
        except (StoreError, NodeDeletionError, MissingMemberNodeError) as e:
            result.error = e
        finally:
            result.end_time = datetime.now(UTC)

        self._log_result(result)
        return result

    def _reconcile_nodes(self, spec: LtmSpec, result: ReconcileResult) -> None:
        for node_spec in spec.nodes:
            name = node_spec.name or node_spec.address
            partition = spec.node_partition(node_spec)
            observed = self._nodes.read(name, partition)

            if observed is None:
                result.actions.append(
                    PlannedAction(ActionType.CREATE_NODE, _path(partition, name), node_spec.address)
                )
                if not result.dry_run:
                    self._nodes.create(name, partition, node_spec.address)
                    result.nodes_created += 1
            elif observed.address != node_spec.address:
                result.actions.append(
                    PlannedAction(
                        ActionType.REPLACE_NODE,
                        _path(partition, name),
                        f"{observed.address} -> {node_spec.address}",
                    )
                )
                if not result.dry_run:
                    # Memberships removed here are restored when pools converge
                    report = self._nodes.delete(name, partition)
                    result.members_removed += len(report.removed_members)
                    self._nodes.create(name, partition, node_spec.address)
                    result.nodes_replaced += 1

    def _reconcile_pools(self, spec: LtmSpec, result: ReconcileResult) -> None:
        for pool_spec in spec.pools:
            partition = spec.pool_partition(pool_spec)
            attributes = pool_spec.attributes()
            observed = self._pools.read(pool_spec.name, partition)
            self._check_member_nodes(
                spec, pool_spec, partition, observed.members if observed else frozenset()
            )

            if observed is None:
                result.actions.append(
                    PlannedAction(
                        ActionType.CREATE_POOL,
                        _path(partition, pool_spec.name),
                        f"{len(pool_spec.members)} members",
                    )
                )
                if not result.dry_run:
                    self._pools.create(pool_spec.name, partition, attributes, pool_spec.members)
                    result.pools_created += 1
                    result.members_added += len(pool_spec.members)
                continue

            if result.dry_run:
                diff = reconcile_sets(pool_spec.members, observed.members)
                if diff.is_empty and observed.attributes == attributes:
                    continue
            else:
                diff = self._pools.converge(pool_spec.name, partition, attributes, pool_spec.members)
                result.pools_converged += 1
                result.members_added += len(diff.to_add)
                result.members_removed += len(diff.to_remove)
                if diff.is_empty and observed.attributes == attributes:
                    continue

            result.actions.append(
                PlannedAction(
                    ActionType.CONVERGE_POOL,
                    _path(partition, pool_spec.name),
                    f"+{len(diff.to_add)} -{len(diff.to_remove)}",
                )
            )

    def _check_member_nodes(
        self,
        spec: LtmSpec,
        pool_spec: PoolSpec,
        partition: str,
        observed_members: frozenset[str],
    ) -> None:
        """Verify every member about to be added points at a node.

        Nodes declared in the spec count as present (they were created
        earlier in the pass, or will be in a real run after a dry run).
        Any other node must already exist on the device.

        Raises:
            MissingMemberNodeError: If a member's node is neither declared
                nor on the device.
        """
        declared = {(spec.node_partition(node), node.name) for node in spec.nodes}
        missing = sorted(
            member
            for member in pool_spec.members - observed_members
            if (partition, member_node_name(member)) not in declared
            and not self._nodes.exists(member_node_name(member), partition)
        )
        if missing:
            raise MissingMemberNodeError(_path(partition, pool_spec.name), missing)

    def _reconcile_absent(self, spec: LtmSpec, result: ReconcileResult) -> None:
        partition = spec.partition

        for pool_name in spec.absent.pools:
            if not self._pools.exists(pool_name, partition):
                continue
            result.actions.append(PlannedAction(ActionType.DELETE_POOL, _path(partition, pool_name)))
            if not result.dry_run:
                self._pools.delete(pool_name, partition)
                result.pools_deleted += 1

        for node_name in spec.absent.nodes:
            if not self._nodes.exists(node_name, partition):
                continue
            result.actions.append(PlannedAction(ActionType.DELETE_NODE, _path(partition, node_name)))
            if not result.dry_run:
                report = self._nodes.delete(node_name, partition)
                result.nodes_deleted += 1
                result.members_removed += len(report.removed_members)

    def run(self, spec_path: Path | None = None) -> None:
        """Run reconciliation passes until shutdown.

        The spec is reloaded every pass. After MAX_CONSECUTIVE_FAILURES
        failed passes the circuit opens and passes are skipped for
        CIRCUIT_BREAKER_RESET_SECONDS.
        """
        spec_path = spec_path or self._config.spec_file
        interval = self._config.reconcile_interval_seconds

        logger.info(
            "Starting reconciler",
            extra={
                "spec_file": str(spec_path),
                "interval_seconds": interval,
                "dry_run": self._config.dry_run,
            },
        )

        while not self._shutdown_event.is_set():
            if self._circuit_open_until is not None:
                now = datetime.now(UTC)
                if now < self._circuit_open_until:
                    remaining = (self._circuit_open_until - now).total_seconds()
                    logger.warning(
                        "Circuit breaker open, skipping reconciliation",
                        extra={
                            "remaining_seconds": remaining,
                            "consecutive_failures": self._consecutive_failures,
                        },
                    )
                    self._shutdown_event.wait(min(remaining, interval))
                    continue
                logger.info("Circuit breaker reset, resuming reconciliation")
                self._circuit_open_until = None
                self._consecutive_failures = 0

            result = self._run_pass(spec_path)
            self._record_outcome(result)

            self._shutdown_event.wait(interval)

        logger.info("Reconciler shutdown complete")

    def _run_pass(self, spec_path: Path) -> ReconcileResult:
        try:
            spec = load_spec(spec_path)
        except SpecLoadError as e:
            logger.error("Spec loading failed", extra={"error": str(e), "spec_file": str(spec_path)})
            return ReconcileResult(dry_run=self._config.dry_run, end_time=datetime.now(UTC), error=e)
        return self.reconcile_once(spec)

    def _record_outcome(self, result: ReconcileResult) -> None:
        """Update circuit breaker state from a pass result."""
        if result.error is None:
            self._consecutive_failures = 0
            return

        self._consecutive_failures += 1
        if self._consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
            self._circuit_open_until = datetime.now(UTC) + timedelta(
                seconds=CIRCUIT_BREAKER_RESET_SECONDS
            )
            logger.error(
                "Circuit breaker opened after consecutive failures",
                extra={
                    "consecutive_failures": self._consecutive_failures,
                    "reset_seconds": CIRCUIT_BREAKER_RESET_SECONDS,
                },
            )

    @property
    def circuit_open(self) -> bool:
        return self._circuit_open_until is not None

    def shutdown(self) -> None:
        """Signal the reconciler to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "dry_run": result.dry_run,
            "duration_seconds": result.duration_seconds,
            "actions": len(result.actions),
            "nodes_created": result.nodes_created,
            "nodes_replaced": result.nodes_replaced,
            "nodes_deleted": result.nodes_deleted,
            "pools_created": result.pools_created,
            "pools_converged": result.pools_converged,
            "pools_deleted": result.pools_deleted,
            "members_added": result.members_added,
            "members_removed": result.members_removed,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Reconciliation failed", extra=extra)
        elif result.dry_run and result.actions:
            logger.warning("Reconciliation: drift detected (dry run)", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
