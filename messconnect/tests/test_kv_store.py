import json
import unittest
from unittest.mock import MagicMock, patch

from redis import exceptions as redis_exceptions

from messconnect.errors import StorageUnavailableError
from messconnect.kv import InMemoryKeyValueStore, RedisKeyValueStore, SqlKeyValueStore


class StoreContract:
    """Behaviour every store implementation must share."""

    store = None

    def test_put_get_and_delete(self):
        self.store.put("user:a", {"id": "a", "name": "Asha"})
        self.assertEqual(self.store.get("user:a"), {"id": "a", "name": "Asha"})
        self.assertTrue(self.store.delete("user:a"))
        self.assertIsNone(self.store.get("user:a"))
        self.assertFalse(self.store.delete("user:a"))

    def test_returned_state_is_a_copy(self):
        self.store.put("note:1", {"id": "1", "tags": ["x"]})
        loaded = self.store.get("note:1")
        loaded["tags"].append("y")
        self.assertEqual(self.store.get("note:1")["tags"], ["x"])

    def test_put_if_absent(self):
        self.assertTrue(self.store.put_if_absent("payment:p1", {"id": "p1"}))
        self.assertFalse(self.store.put_if_absent("payment:p1", {"id": "other"}))
        self.assertEqual(self.store.get("payment:p1"), {"id": "p1"})

    def test_get_many_keeps_order_and_gaps(self):
        self.store.put("k:1", {"n": 1})
        self.store.put("k:3", {"n": 3})
        self.assertEqual(
            self.store.get_many(["k:3", "k:2", "k:1"]), [{"n": 3}, None, {"n": 1}]
        )
        self.assertEqual(self.store.get_many([]), [])

    def test_delete_many_counts_existing(self):
        self.store.put("k:1", {"n": 1})
        self.store.put("k:2", {"n": 2})
        self.assertEqual(self.store.delete_many(["k:1", "k:2", "k:9"]), 2)
        self.assertEqual(self.store.delete_many([]), 0)

    def test_index_keeps_insertion_order_without_duplicates(self):
        self.assertEqual(self.store.index_add("user", ["c", "a", "b"]), 3)
        self.assertEqual(self.store.index_add("user", ["a", "d"]), 1)
        self.assertEqual(self.store.index_range("user", 0, 10), ["c", "a", "b", "d"])
        self.assertEqual(self.store.index_range("user", 1, 2), ["a", "b"])
        self.assertEqual(self.store.index_size("user"), 4)

    def test_index_remove_and_clear(self):
        self.store.index_add("note", ["1", "2", "3"])
        self.store.index_add("other", ["1"])
        self.assertEqual(self.store.index_remove("note", ["2", "9"]), 1)
        self.assertEqual(self.store.index_range("note", 0, 10), ["1", "3"])
        self.store.index_clear("note")
        self.assertEqual(self.store.index_size("note"), 0)
        self.assertEqual(self.store.index_range("other", 0, 10), ["1"])


class InMemoryKeyValueStoreTests(StoreContract, unittest.TestCase):
    def setUp(self):
        self.store = InMemoryKeyValueStore()

    def test_reset(self):
        self.store.put("k:1", {"n": 1})
        self.store.index_add("k", ["1"])
        self.store.reset()
        self.assertEqual(self.store.data, {})
        self.assertEqual(self.store.index_size("k"), 0)


class SqlKeyValueStoreTests(StoreContract, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL store.
    """

    def setUp(self):
        self.store = SqlKeyValueStore("sqlite+pysqlite:///:memory:")

    def test_overwrite_existing_entry(self):
        self.store.put("k:1", {"n": 1})
        self.store.put("k:1", {"n": 2})
        self.assertEqual(self.store.get("k:1"), {"n": 2})

    def test_requires_database_url(self):
        with self.assertRaises(ValueError):
            SqlKeyValueStore("")


class RedisKeyValueStoreTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("messconnect.kv.redis.Redis.from_url")
        self.addCleanup(patcher.stop)
        self.client = MagicMock()
        patcher.start().return_value = self.client
        self.store = RedisKeyValueStore("redis://localhost:6379/0", namespace="test")

    def test_keys_are_namespaced_json(self):
        self.client.get.return_value = json.dumps({"id": "a"})
        self.assertEqual(self.store.get("user:a"), {"id": "a"})
        self.client.get.assert_called_once_with("test:user:a")

        self.store.put("user:a", {"id": "a"})
        self.client.set.assert_called_once_with("test:user:a", json.dumps({"id": "a"}))

    def test_put_if_absent_uses_nx(self):
        self.client.set.return_value = None
        self.assertFalse(self.store.put_if_absent("payment:p1", {"id": "p1"}))
        _, kwargs = self.client.set.call_args
        self.assertTrue(kwargs["nx"])

    def test_index_add_scores_by_sequence(self):
        self.client.incrby.return_value = 12
        self.client.zadd.return_value = 2
        self.assertEqual(self.store.index_add("note", ["x", "y"]), 2)
        self.client.incrby.assert_called_once_with("test:seq:note", 2)
        self.client.zadd.assert_called_once_with(
            "test:index:note", {"x": 11, "y": 12}, nx=True
        )

    def test_index_range_translates_offset_and_limit(self):
        self.client.zrange.return_value = ["b", "c"]
        self.assertEqual(self.store.index_range("note", 1, 2), ["b", "c"])
        self.client.zrange.assert_called_once_with("test:index:note", 1, 2)

    def test_connection_errors_become_storage_unavailable(self):
        self.client.get.side_effect = redis_exceptions.ConnectionError("down")
        with self.assertRaises(StorageUnavailableError):
            self.store.get("user:a")


if __name__ == "__main__":
    unittest.main()
