"""Pydantic models for LTM nodes, pools and declarative specs.

These models provide:
1. The store representation of nodes and pools (what the BIG-IP returns)
2. Desired and observed pool attributes for convergence
3. Type-safe YAML parsing of the declared state, validated at the boundary
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Partition used whenever a caller omits one or the store returns an empty value
DEFAULT_PARTITION = "Common"

DEFAULT_LOAD_BALANCING_MODE = "round-robin"

# Monitors on a pool are a conjunction, serialized as one expression
MONITOR_SEPARATOR = " and "

# Member references are "node-name:port" with a 2-5 digit port
MEMBER_PATTERN = re.compile(r":\d{2,5}$")

VALID_NAME_PATTERN = r"^[A-Za-z0-9_.-][A-Za-z0-9_.:%-]*$"


def validate_member_reference(member: str) -> str:
    """Check that a member reference carries a colon-delimited port suffix.

    Raises:
        ValueError: If the reference does not end with ``:<port>``.
    """
    if not MEMBER_PATTERN.search(member):
        raise ValueError(f"member must be in the form node_name:port (e.g. node01:443): {member!r}")
    return member


def member_node_name(member: str) -> str:
    """Return the node-name component of a ``node-name:port`` reference."""
    node_name, _, _ = member.rpartition(":")
    return node_name


def normalize_partition(partition: str | None, default: str = DEFAULT_PARTITION) -> str:
    """Map an empty or missing partition to the default partition."""
    if partition is None:
        return default
    partition = partition.strip()
    return partition or default


# =============================================================================
# Store Representation
# =============================================================================


class Node(BaseModel):
    """An LTM node as stored on the BIG-IP."""

    model_config = ConfigDict(frozen=True)

    name: str
    partition: str = DEFAULT_PARTITION
    address: str


class Pool(BaseModel):
    """An LTM pool as stored on the BIG-IP (without members)."""

    model_config = ConfigDict(frozen=True)

    name: str
    partition: str = DEFAULT_PARTITION
    allow_nat: bool = True
    allow_snat: bool = True
    load_balancing_mode: str = DEFAULT_LOAD_BALANCING_MODE
    monitor: str = ""


# =============================================================================
# Desired / Observed Pool State
# =============================================================================


class PoolAttributes(BaseModel):
    """Pool attributes that are always written as a full overwrite."""

    model_config = ConfigDict(frozen=True)

    allow_nat: bool = True
    allow_snat: bool = True
    load_balancing_mode: str = DEFAULT_LOAD_BALANCING_MODE
    monitors: frozenset[str] = Field(default_factory=frozenset)

    def monitor_expression(self) -> str:
        """Join the monitors into the store's single ``a and b`` expression."""
        return MONITOR_SEPARATOR.join(sorted(self.monitors))

    def to_pool(self, name: str, partition: str) -> Pool:
        return Pool(
            name=name,
            partition=partition,
            allow_nat=self.allow_nat,
            allow_snat=self.allow_snat,
            load_balancing_mode=self.load_balancing_mode,
            monitor=self.monitor_expression(),
        )

    @classmethod
    def from_pool(cls, pool: Pool) -> PoolAttributes:
        return cls(
            allow_nat=pool.allow_nat,
            allow_snat=pool.allow_snat,
            load_balancing_mode=pool.load_balancing_mode,
            monitors=split_monitor_expression(pool.monitor),
        )


def split_monitor_expression(monitor: str | None) -> frozenset[str]:
    """Split a monitor expression on ``" and "`` into a set of monitor names.

    An empty or whitespace-only expression yields an empty set.
    """
    if not monitor or not monitor.strip():
        return frozenset()
    return frozenset(part.strip() for part in monitor.strip().split(MONITOR_SEPARATOR) if part.strip())


class PoolState(BaseModel):
    """Observed pool attributes and membership."""

    model_config = ConfigDict(frozen=True)

    name: str
    partition: str
    attributes: PoolAttributes
    members: frozenset[str] = Field(default_factory=frozenset)


# =============================================================================
# Declarative Spec
# =============================================================================


class NodeSpec(BaseModel):
    """Declared node. The name defaults to the address when omitted."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str | None = Field(None, pattern=VALID_NAME_PATTERN)
    address: Annotated[str, Field(min_length=1)]
    partition: str | None = None

    @model_validator(mode="after")
    def default_name_to_address(self) -> NodeSpec:
        if not self.name:
            self.name = self.address
        return self


class PoolSpec(BaseModel):
    """Declared pool with its attributes and member references."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, pattern=VALID_NAME_PATTERN)]
    partition: str | None = None
    nodes: list[str] = Field(default_factory=list)
    monitors: list[str] = Field(default_factory=list)
    allow_nat: bool = Field(True, alias="allowNat")
    allow_snat: bool = Field(True, alias="allowSnat")
    load_balancing_mode: str = Field(DEFAULT_LOAD_BALANCING_MODE, alias="loadBalancingMode")

    @field_validator("nodes")
    @classmethod
    def validate_nodes(cls, v: list[str]) -> list[str]:
        for member in v:
            validate_member_reference(member)
        return v

    @property
    def members(self) -> frozenset[str]:
        return frozenset(self.nodes)

    def attributes(self) -> PoolAttributes:
        return PoolAttributes(
            allow_nat=self.allow_nat,
            allow_snat=self.allow_snat,
            load_balancing_mode=self.load_balancing_mode,
            monitors=frozenset(self.monitors),
        )


class RemovalSpec(BaseModel):
    """Resources that must not exist on the device."""

    model_config = {"extra": "ignore"}

    nodes: list[str] = Field(default_factory=list)
    pools: list[str] = Field(default_factory=list)


class LtmSpec(BaseModel):
    """Declared LTM state for one reconciliation scope."""

    model_config = {"extra": "ignore"}

    partition: str = DEFAULT_PARTITION
    nodes: list[NodeSpec] = Field(default_factory=list)
    pools: list[PoolSpec] = Field(default_factory=list)
    absent: RemovalSpec = Field(default_factory=RemovalSpec)

    @model_validator(mode="after")
    def check_consistency(self) -> LtmSpec:
        for kind, names in (
            ("node", [n.name for n in self.nodes]),
            ("pool", [p.name for p in self.pools]),
        ):
            duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
            if duplicates:
                raise ValueError(f"duplicate {kind} names: {duplicates}")

        conflicting = sorted(
            ({n.name for n in self.nodes} & set(self.absent.nodes))
            | ({p.name for p in self.pools} & set(self.absent.pools))
        )
        if conflicting:
            raise ValueError(f"resources both declared and marked absent: {conflicting}")

        # Members may not point at nodes scheduled for deletion
        absent_nodes = set(self.absent.nodes)
        orphaned = sorted(
            f"{pool.name}/{member}"
            for pool in self.pools
            for member in pool.nodes
            if member_node_name(member) in absent_nodes
        )
        if orphaned:
            raise ValueError(f"pool members reference nodes marked absent: {orphaned}")
        return self

    def node_partition(self, node: NodeSpec) -> str:
        return normalize_partition(node.partition, self.partition)

    def pool_partition(self, pool: PoolSpec) -> str:
        return normalize_partition(pool.partition, self.partition)
