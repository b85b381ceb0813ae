"""Node lifecycle: create, read, update and dependency-aware delete."""

from __future__ import annotations

import logging

from .client import StateStore, StoreError
from .models import DEFAULT_PARTITION, Node, normalize_partition
from .node_deletion import DeletionReport, NodeDeleter

logger = logging.getLogger(__name__)


class NodeController:
    """Manages LTM nodes.

    Address and partition are fixed once a node exists; changing either
    means replacing the node, which the reconciler does with
    ``delete`` followed by ``create``.
    """

    def __init__(
        self,
        store: StateStore,
        deleter: NodeDeleter | None = None,
        *,
        default_partition: str = DEFAULT_PARTITION,
    ) -> None:
        self._store = store
        self._default_partition = default_partition
        self._deleter = deleter or NodeDeleter(store, default_partition=default_partition)

    def _partition(self, partition: str | None) -> str:
        return normalize_partition(partition, self._default_partition)

    def create(self, name: str, partition: str | None, address: str) -> Node:
        partition = self._partition(partition)
        logger.info("Creating node", extra={"node": name, "partition": partition, "address": address})

        self._store.create_node(name, partition, address)

        node = self.read(name, partition)
        if node is None:
            raise StoreError(f"Node '/{partition}/{name}' not found after creation")
        return node

    def read(self, name: str, partition: str | None) -> Node | None:
        partition = self._partition(partition)
        logger.debug("Fetching node", extra={"node": name, "partition": partition})

        node = self._store.get_node(name, partition)
        if node is None:
            return None
        return node.model_copy(update={"partition": self._partition(node.partition)})

    def exists(self, name: str, partition: str | None) -> bool:
        return self.read(name, partition) is not None

    def update(self, name: str, partition: str | None, address: str) -> None:
        """Write the full node representation back to the device."""
        partition = self._partition(partition)
        self._store.modify_node(name, partition, Node(name=name, partition=partition, address=address))

    def delete(self, name: str, partition: str | None) -> DeletionReport:
        return self._deleter.delete(name, self._partition(partition))
