"""BIG-IP Mock for controller and reconciler testing.

Provides an in-memory implementation of the StateStore protocol so the
controllers can be exercised without a device.

Key Features:
- Nodes, pools and pool members held in dictionaries
- Device-accurate error text, including reference conflicts on node delete
- Error injection per operation
- Call recording for ordering and count assertions

Usage:
    from bigip_mock import MockBigIPStore

    store = MockBigIPStore()
    store.seed_node("nodeA", "10.0.0.1")
    store.seed_pool("pool1", members=["nodeA:443"])

    NodeDeleter(store).delete("nodeA", "Common")

    assert store.operations() == ["delete_node", "pool_members", ...]
"""

from .store import MockBigIPStore, MockCall, reference_conflict_message

__all__ = [
    "MockBigIPStore",
    "MockCall",
    "reference_conflict_message",
]
