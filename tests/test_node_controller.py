"""Tests for node lifecycle."""

from __future__ import annotations

import pytest
from bigip_mock import MockBigIPStore

from ltm_operator.client import StoreError
from ltm_operator.models import Node
from ltm_operator.node_controller import NodeController
from ltm_operator.node_deletion import NodeDeleter, NodeDeletionStalledError


@pytest.fixture
def controller(store: MockBigIPStore) -> NodeController:
    return NodeController(store)


class TestNodeController:
    """Tests for NodeController."""

    def test_create_reads_back(self, store: MockBigIPStore, controller: NodeController) -> None:
        node = controller.create("web01", "Common", "10.0.0.10")

        assert node == Node(name="web01", partition="Common", address="10.0.0.10")
        assert store.operations() == ["create_node", "get_node"]

    def test_create_duplicate_fails(self, store: MockBigIPStore, controller: NodeController) -> None:
        store.seed_node("web01", "10.0.0.10")

        with pytest.raises(StoreError, match="already exists"):
            controller.create("web01", "Common", "10.0.0.10")

    def test_read_normalizes_partition(self, store: MockBigIPStore, controller: NodeController) -> None:
        """Test that an empty partition on the device maps to the default."""
        store.nodes[("Common", "web01")] = Node(name="web01", partition="", address="10.0.0.10")

        node = controller.read("web01", "Common")

        assert node is not None
        assert node.partition == "Common"

    def test_read_missing(self, controller: NodeController) -> None:
        assert controller.read("ghost", "Common") is None

    def test_exists(self, store: MockBigIPStore, controller: NodeController) -> None:
        store.seed_node("web01", "10.0.0.10")

        assert controller.exists("web01", None)
        assert not controller.exists("web02", None)

    def test_update_writes_full_node(self, store: MockBigIPStore, controller: NodeController) -> None:
        store.seed_node("web01", "10.0.0.10")

        controller.update("web01", "Common", "10.0.0.10")

        assert store.operations() == ["modify_node"]
        assert store.nodes[("Common", "web01")].address == "10.0.0.10"

    def test_delete_clears_references(self, store: MockBigIPStore, controller: NodeController) -> None:
        store.seed_node("web01", "10.0.0.10")
        store.seed_pool("web", members=["web01:80", "web02:80"])

        report = controller.delete("web01", None)

        assert report.removed_members == [("web", "web01:80")]
        assert ("Common", "web01") not in store.nodes

    def test_delete_uses_injected_deleter(self, store: MockBigIPStore) -> None:
        store.seed_node("web01", "10.0.0.10")
        store.seed_pool("web", members=["web01:80"])
        store.sticky_pools.add(("Common", "web"))
        controller = NodeController(store, NodeDeleter(store, max_attempts=2))

        with pytest.raises(NodeDeletionStalledError):
            controller.delete("web01", "Common")

        assert len(store.calls_to("delete_node")) == 2
