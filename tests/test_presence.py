"""Tests for the presence registry"""

import threading
import uuid

from tempsocial.services.presence import PresenceRegistry


class TestPresenceRegistry:
    def test_register_and_lookup(self, connection_factory):
        registry = PresenceRegistry()
        user_id = uuid.uuid4()
        connection = connection_factory()

        assert registry.register(user_id, connection) is None
        assert registry.lookup(user_id) is connection
        assert registry.is_present(user_id)
        assert len(registry) == 1

    def test_reregister_evicts_previous(self, connection_factory):
        registry = PresenceRegistry()
        user_id = uuid.uuid4()
        first, second = connection_factory(), connection_factory()

        registry.register(user_id, first)
        evicted = registry.register(user_id, second)

        assert evicted is first
        assert registry.lookup(user_id) is second
        assert len(registry) == 1

    def test_reregister_same_connection_is_not_eviction(self, connection_factory):
        registry = PresenceRegistry()
        user_id = uuid.uuid4()
        connection = connection_factory()

        registry.register(user_id, connection)
        assert registry.register(user_id, connection) is None

    def test_conditional_remove_keeps_successor(self, connection_factory):
        registry = PresenceRegistry()
        user_id = uuid.uuid4()
        first, second = connection_factory(), connection_factory()
        registry.register(user_id, first)
        registry.register(user_id, second)

        assert registry.remove(user_id, first) is False
        assert registry.lookup(user_id) is second
        assert registry.remove(user_id, second) is True
        assert registry.lookup(user_id) is None

    def test_unconditional_remove(self, connection_factory):
        registry = PresenceRegistry()
        user_id = uuid.uuid4()
        registry.register(user_id, connection_factory())

        assert registry.remove(user_id) is True
        assert registry.remove(user_id) is False

    def test_snapshot_is_a_copy(self, connection_factory):
        registry = PresenceRegistry()
        user_id = uuid.uuid4()
        registry.register(user_id, connection_factory())

        snapshot = registry.snapshot()
        registry.remove(user_id)

        assert user_id in snapshot
        assert registry.snapshot() == {}

    def test_concurrent_registration_keeps_one_entry_per_identity(self, connection_factory):
        registry = PresenceRegistry()
        user_ids = [uuid.uuid4() for _ in range(5)]
        connections = [connection_factory() for _ in range(50)]

        def worker(index: int) -> None:
            registry.register(user_ids[index % 5], connections[index])

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == 5
        for user_id, connection in registry.snapshot().items():
            assert connection in connections
