import unittest
from unittest.mock import patch

from messconnect.entities import (
    INDEXED_ENTITIES,
    ComplaintEntity,
    MenuEntity,
    NoteEntity,
    PaymentEntity,
    PaymentMonthEntity,
    ResetTokenEntity,
    SettingsEntity,
    UserEntity,
    VerificationTokenEntity,
    clear_all_data,
    delete_user_cascade,
    public_user,
)
from messconnect.errors import EntityExistsError, EntityNotFoundError, InvalidTokenError
from messconnect.index import Index
from messconnect.kv import InMemoryKeyValueStore


class EntityTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryKeyValueStore()

    def test_create_fills_defaults_and_indexes(self):
        note = NoteEntity.create(self.store, {"id": "n1", "text": "Buy onions"})
        self.assertEqual(note, {"id": "n1", "text": "Buy onions", "completed": False, "createdAt": 0})
        self.assertEqual(NoteEntity.index(self.store).list_all(), ["n1"])

    def test_create_requires_id_and_rejects_duplicates(self):
        with self.assertRaises(ValueError):
            NoteEntity.create(self.store, {"text": "no id"})
        NoteEntity.create(self.store, {"id": "n1"})
        with self.assertRaises(EntityExistsError):
            NoteEntity.create(self.store, {"id": "n1", "text": "again"})
        self.assertEqual(NoteEntity.index(self.store).count(), 1)

    def test_defaults_are_not_shared_between_records(self):
        UserEntity.create(self.store, {"id": "a"})
        UserEntity.build_state({})["name"] = "changed"
        self.assertEqual(UserEntity.initial_state["name"], "")

    def test_patch_is_shallow_and_keeps_id(self):
        NoteEntity.create(self.store, {"id": "n1", "text": "Buy onions"})
        patched = NoteEntity(self.store, "n1").patch({"completed": True, "id": "other"})
        self.assertEqual(patched["id"], "n1")
        self.assertEqual(patched["text"], "Buy onions")
        self.assertTrue(patched["completed"])

    def test_missing_record(self):
        entity = NoteEntity(self.store, "missing")
        self.assertFalse(entity.exists())
        self.assertIsNone(entity.get_state_or_none())
        with self.assertRaises(EntityNotFoundError):
            entity.get_state()
        with self.assertRaises(EntityNotFoundError):
            entity.patch({"text": "x"})

    def test_delete_removes_record_and_index_entry(self):
        NoteEntity.create(self.store, {"id": "n1"})
        self.assertTrue(NoteEntity(self.store, "n1").delete())
        self.assertEqual(NoteEntity.index(self.store).count(), 0)
        self.assertFalse(NoteEntity(self.store, "n1").delete())

    def test_list_pages_in_creation_order(self):
        for i in range(5):
            NoteEntity.create(self.store, {"id": f"n{i}"})
        first, cursor = NoteEntity.list(self.store, limit=2)
        self.assertEqual([n["id"] for n in first], ["n0", "n1"])
        second, cursor = NoteEntity.list(self.store, cursor, limit=2)
        self.assertEqual([n["id"] for n in second], ["n2", "n3"])
        last, cursor = NoteEntity.list(self.store, cursor, limit=2)
        self.assertEqual([n["id"] for n in last], ["n4"])
        self.assertIsNone(cursor)

    def test_list_skips_ids_whose_record_is_gone(self):
        NoteEntity.create(self.store, {"id": "n1"})
        NoteEntity.create(self.store, {"id": "n2"})
        self.store.delete(NoteEntity.key_for("n1"))
        self.assertEqual([n["id"] for n in NoteEntity.list_all(self.store)], ["n2"])

    def test_singleton_upsert_and_clear(self):
        self.assertIsNone(SettingsEntity.load(self.store))
        SettingsEntity.upsert(self.store, {"monthlyFee": 2500})
        state = SettingsEntity.upsert(self.store, {"messRules": "Be on time."})
        self.assertEqual(
            state, {"id": "singleton", "monthlyFee": 2500, "messRules": "Be on time."}
        )
        self.assertEqual(SettingsEntity.clear(self.store), 1)
        self.assertIsNone(SettingsEntity.load(self.store))

    def test_public_user_drops_password_hash(self):
        self.assertEqual(public_user({"id": "a", "passwordHash": "x"}), {"id": "a"})


class IndexTests(unittest.TestCase):
    def setUp(self):
        self.index = Index(InMemoryKeyValueStore(), "things")

    def test_add_is_idempotent(self):
        self.assertTrue(self.index.add("a"))
        self.assertFalse(self.index.add("a"))
        self.assertEqual(self.index.add_many(["a", "b", "c"]), 2)
        self.assertEqual(self.index.list_all(), ["a", "b", "c"])

    def test_exact_page_boundary_has_no_next_cursor(self):
        self.index.add_many(["a", "b"])
        ids, cursor = self.index.page(limit=2)
        self.assertEqual(ids, ["a", "b"])
        self.assertIsNone(cursor)

    def test_bad_cursor_or_limit(self):
        with self.assertRaises(ValueError):
            self.index.page("abc")
        with self.assertRaises(ValueError):
            self.index.page("-1")
        with self.assertRaises(ValueError):
            self.index.page(limit=0)


class TokenTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryKeyValueStore()

    def test_token_is_single_use(self):
        token = VerificationTokenEntity.issue(self.store, "asha@example.com", ttl_minutes=10)
        entity = VerificationTokenEntity(self.store, token["id"])
        self.assertTrue(entity.consume()["used"])
        with self.assertRaises(InvalidTokenError) as ctx:
            entity.consume()
        self.assertEqual(str(ctx.exception), "This link has already been used.")

    def test_expired_or_unknown_token(self):
        token = ResetTokenEntity.issue(self.store, "asha@example.com", ttl_minutes=1)
        with patch("messconnect.entities.now_ms", return_value=token["expiresAt"] + 1):
            with self.assertRaises(InvalidTokenError):
                ResetTokenEntity(self.store, token["id"]).consume()
        with self.assertRaises(InvalidTokenError):
            ResetTokenEntity(self.store, "nope").consume()


class PaymentMonthTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryKeyValueStore()

    def test_month_can_be_claimed_once(self):
        PaymentMonthEntity.claim(self.store, "asha", "2025-01", "pay_1")
        self.assertTrue(PaymentMonthEntity.is_claimed(self.store, "asha", "2025-01"))
        with self.assertRaises(EntityExistsError):
            PaymentMonthEntity.claim(self.store, "asha", "2025-01", "pay_2")
        self.assertFalse(PaymentMonthEntity.is_claimed(self.store, "ravi", "2025-01"))

    def test_release_frees_the_month(self):
        PaymentMonthEntity.claim(self.store, "asha", "2025-01", "pay_1")
        PaymentMonthEntity.release(self.store, "asha", "2025-01")
        PaymentMonthEntity.claim(self.store, "asha", "2025-01", "pay_2")
        self.assertEqual(PaymentMonthEntity.index(self.store).count(), 1)

    def test_claims_go_with_the_student(self):
        UserEntity.create(self.store, {"id": "asha"})
        PaymentMonthEntity.claim(self.store, "asha", "2025-01", "pay_1")
        delete_user_cascade(self.store, "asha")
        self.assertFalse(PaymentMonthEntity.is_claimed(self.store, "asha", "2025-01"))


class CascadeTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryKeyValueStore()
        for user_id in ("asha", "ravi"):
            UserEntity.create(self.store, {"id": user_id})
            ComplaintEntity.create(self.store, {"id": f"c-{user_id}", "studentId": user_id})
            PaymentEntity.create(self.store, {"id": f"p-{user_id}", "studentId": user_id})
            VerificationTokenEntity.issue(self.store, user_id, ttl_minutes=5)

    def test_delete_user_cascade_only_touches_owner(self):
        removed = delete_user_cascade(self.store, "asha")
        self.assertEqual(removed["complaint"], 1)
        self.assertEqual(removed["payment"], 1)
        self.assertEqual(removed["verification_token"], 1)
        self.assertEqual(removed["user"], 1)
        self.assertEqual(UserEntity.index(self.store).list_all(), ["ravi"])
        self.assertEqual(ComplaintEntity.index(self.store).list_all(), ["c-ravi"])
        self.assertEqual(PaymentEntity.index(self.store).list_all(), ["p-ravi"])

    def test_clear_all_data(self):
        MenuEntity.upsert(self.store, {"days": []})
        clear_all_data(self.store)
        for entity_cls in INDEXED_ENTITIES:
            self.assertEqual(entity_cls.index(self.store).count(), 0)
        self.assertIsNone(MenuEntity.load(self.store))
        self.assertEqual(self.store.data, {})


if __name__ == "__main__":
    unittest.main()
