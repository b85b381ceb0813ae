"""Tests for dependency-aware node deletion."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from bigip_mock import MockBigIPStore, reference_conflict_message

from ltm_operator.client import ResourceNotFoundError, StoreError
from ltm_operator.node_deletion import (
    NodeDeleter,
    NodeDeletionStalledError,
    PoolReference,
    extract_blocking_pool,
)


class TestExtractBlockingPool:
    """Tests for extract_blocking_pool."""

    def test_device_message(self) -> None:
        """Test extraction from the device's full error text."""
        message = reference_conflict_message("Common", "10.0.0.1", "Common", "pool1")

        assert extract_blocking_pool(message) == PoolReference(partition="Common", name="pool1")

    def test_minimal_pattern(self) -> None:
        """Test the bare conflict phrase."""
        ref = extract_blocking_pool("referenced by a member of pool '/Common/pool1'")
        assert ref == PoolReference("Common", "pool1")

    @pytest.mark.parametrize("pool_name", ["web-pool", "web_pool", "web.pool.v2", "Pool01"])
    def test_allowed_characters(self, pool_name: str) -> None:
        """Test letters, digits, hyphen, underscore and dot in pool names."""
        ref = extract_blocking_pool(f"is referenced by a member of pool '/Tenant/{pool_name}'.")

        assert ref is not None
        assert ref.name == pool_name
        assert ref.partition == "Tenant"

    def test_nested_folder_uses_last_segment(self) -> None:
        """Test that the pool name is the last path segment."""
        ref = extract_blocking_pool("referenced by a member of pool '/Tenant/app1/web'")

        assert ref == PoolReference("Tenant", "web")
        assert ref is not None and ref.path == "/Tenant/web"

    @pytest.mark.parametrize(
        "message",
        [
            "permission denied",
            "01020036:3: The requested Node (/Common/nodeA) was not found.",
            "referenced by a virtual server '/Common/vs1'",
            "referenced by a member of pool ''",
            "referenced by a member of pool '/'",
            "referenced by a member of pool '/Common/bad name'",
            "",
        ],
    )
    def test_non_matching_messages(self, message: str) -> None:
        """Test that other errors yield no blocking pool."""
        assert extract_blocking_pool(message) is None


class TestNodeDeleter:
    """Tests for NodeDeleter."""

    def test_happy_path_no_listing(self, store: MockBigIPStore) -> None:
        """Test that a successful first delete issues no other calls."""
        store.seed_node("nodeA", "10.0.0.1")

        report = NodeDeleter(store).delete("nodeA", "Common")

        assert store.operations() == ["delete_node"]
        assert report.attempts == 1
        assert report.removed_members == []
        assert ("Common", "nodeA") not in store.nodes

    def test_single_block_removes_only_matching_member(self, store: MockBigIPStore) -> None:
        """Test that only nodeA:443 is removed from the blocking pool."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_node("nodeB", "10.0.0.2")
        store.seed_pool("pool1", members=["nodeA:443", "nodeB:443"])

        report = NodeDeleter(store).delete("nodeA", "Common")

        assert store.operations() == [
            "delete_node",
            "pool_members",
            "delete_pool_member",
            "delete_node",
        ]
        assert store.calls_to("delete_pool_member")[0].args == ("pool1", "Common", "nodeA:443")
        assert store.members[("Common", "pool1")] == ["nodeB:443"]
        assert report.attempts == 2
        assert report.removed_members == [("pool1", "nodeA:443")]
        assert report.blocking_pools == [PoolReference("Common", "pool1")]

    def test_prefix_requires_port_delimiter(self, store: MockBigIPStore) -> None:
        """Test that nodeAB:80 is not treated as a member of nodeA."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("pool1", members=["nodeA:80", "nodeAB:80", "xnodeA:80"])

        NodeDeleter(store).delete("nodeA", "Common")

        assert sorted(store.members[("Common", "pool1")]) == ["nodeAB:80", "xnodeA:80"]

    def test_multiple_ports_in_one_pool(self, store: MockBigIPStore) -> None:
        """Test that every port of the node is removed from the pool."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("pool1", members=["nodeA:80", "nodeA:443"])

        report = NodeDeleter(store).delete("nodeA", "Common")

        assert len(report.removed_members) == 2
        assert store.members[("Common", "pool1")] == []

    def test_multiple_blocking_pools(self, store: MockBigIPStore) -> None:
        """Test one remediation round per blocking pool."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("api", members=["nodeA:8080"])
        store.seed_pool("web", members=["nodeA:80", "nodeC:80"])

        report = NodeDeleter(store).delete("nodeA", "Common")

        assert report.attempts == 3
        assert [ref.name for ref in report.blocking_pools] == ["api", "web"]
        assert store.members[("Common", "web")] == ["nodeC:80"]
        assert ("Common", "nodeA") not in store.nodes

    def test_blocking_pool_in_other_partition(self, store: MockBigIPStore) -> None:
        """Test that the pool is listed in the partition named by the error."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("web", members=["nodeA:80"], partition="Tenant")

        NodeDeleter(store).delete("nodeA", "Common")

        assert store.calls_to("pool_members")[0].args == ("web", "Tenant")
        assert store.members[("Tenant", "web")] == []

    def test_non_matching_error_returned_verbatim(self, store: MockBigIPStore) -> None:
        """Test that an unrelated error is raised unchanged with no remediation."""
        store.seed_node("nodeA", "10.0.0.1")
        error = StoreError("permission denied", status_code=401)
        store.fail_next("delete_node", error)

        with pytest.raises(StoreError) as exc_info:
            NodeDeleter(store).delete("nodeA", "Common")

        assert exc_info.value is error
        assert store.operations() == ["delete_node"]

    def test_missing_node_is_fatal(self, store: MockBigIPStore) -> None:
        """Test that deleting an unknown node propagates the not-found error."""
        with pytest.raises(ResourceNotFoundError):
            NodeDeleter(store).delete("ghost", "Common")

    def test_listing_failure_aborts(self, store: MockBigIPStore) -> None:
        """Test that a failing member listing aborts deletion."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("pool1", members=["nodeA:443"])
        store.fail_next("pool_members", "device busy")

        with pytest.raises(StoreError, match="device busy"):
            NodeDeleter(store).delete("nodeA", "Common")

        assert store.operations() == ["delete_node", "pool_members"]

    def test_member_removal_failure_aborts(self, store: MockBigIPStore) -> None:
        """Test that a failing membership removal aborts without retrying delete."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("pool1", members=["nodeA:80", "nodeA:443"])
        store.fail_next("delete_pool_member", "01070712:3: insufficient privileges")

        with pytest.raises(StoreError, match="insufficient privileges"):
            NodeDeleter(store).delete("nodeA", "Common")

        assert store.operations() == ["delete_node", "pool_members", "delete_pool_member"]
        assert ("Common", "nodeA") in store.nodes

    def test_already_absent_member_is_success(self, store: MockBigIPStore) -> None:
        """Test that a concurrently removed member does not abort deletion."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("pool1", members=["nodeA:443"])
        # Another deleter removes the member between listing and removal
        store.fail_next(
            "delete_pool_member", ResourceNotFoundError("member not found", status_code=404)
        )

        original_delete_member = store.delete_pool_member

        def delete_member_after_race(pool_name: str, partition: str, member: str) -> None:
            store.members[(partition, pool_name)].remove(member)
            original_delete_member(pool_name, partition, member)

        store.delete_pool_member = delete_member_after_race  # type: ignore[method-assign]

        report = NodeDeleter(store).delete("nodeA", "Common")

        assert report.attempts == 2
        assert report.removed_members == []
        assert ("Common", "nodeA") not in store.nodes

    def test_no_matching_members_still_retries(self, store: MockBigIPStore) -> None:
        """Test that an empty match still re-issues the delete."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("pool1", members=["nodeB:80"])
        store.fail_next(
            "delete_node",
            reference_conflict_message("Common", "10.0.0.1", "Common", "pool1"),
        )

        report = NodeDeleter(store).delete("nodeA", "Common")

        assert store.operations() == ["delete_node", "pool_members", "delete_node"]
        assert report.attempts == 2

    def test_repeated_block_hits_cap(self, store: MockBigIPStore) -> None:
        """Test that a reference that never clears ends in a fatal error."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("pool1", members=["nodeA:443"])
        store.sticky_pools.add(("Common", "pool1"))

        with pytest.raises(NodeDeletionStalledError) as exc_info:
            NodeDeleter(store, max_attempts=4).delete("nodeA", "Common")

        err = exc_info.value
        assert err.attempts == 4
        assert err.blocking_pool == PoolReference("Common", "pool1")
        assert isinstance(err.__cause__, StoreError)
        assert "referenced by a member of pool '/Common/pool1'" in str(err.__cause__)
        assert len(store.calls_to("delete_node")) == 4
        assert ("Common", "nodeA") in store.nodes

    def test_minimum_cap_still_remediates(self, store: MockBigIPStore) -> None:
        """Test that the smallest allowed bound removes memberships once before giving up."""
        store.seed_node("nodeA", "10.0.0.1")
        store.seed_pool("pool1", members=["nodeA:443"])
        store.sticky_pools.add(("Common", "pool1"))

        with pytest.raises(NodeDeletionStalledError):
            NodeDeleter(store, max_attempts=2).delete("nodeA", "Common")

        assert store.operations() == [
            "delete_node",
            "pool_members",
            "delete_pool_member",
            "delete_node",
        ]

    @pytest.mark.parametrize("max_attempts", [0, 1])
    def test_invalid_max_attempts(self, store: MockBigIPStore, max_attempts: int) -> None:
        """Test that the bound leaves room for at least one remediation round."""
        with pytest.raises(ValueError, match="max_attempts must be at least 2"):
            NodeDeleter(store, max_attempts=max_attempts)

    def test_empty_partition_uses_default(self) -> None:
        """Test that an empty partition maps to the default partition."""
        mock_store = MagicMock()

        report = NodeDeleter(mock_store, default_partition="Tenant").delete("nodeA", "")

        mock_store.delete_node.assert_called_once_with("nodeA", "Tenant")
        assert report.partition == "Tenant"
