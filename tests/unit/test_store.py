"""Tests for the policy-enforcing ledger store."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from savings_ledger.persistence.database import LedgerStore
from savings_ledger.persistence.errors import ConstraintViolation, PolicyDenied, StoreError
from savings_ledger.persistence.policies import Identity


class TestSchema:
    """Tests for schema creation and connection handling."""

    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "ledger.db"
        with LedgerStore(db_path) as store:
            store.ping()
        assert db_path.exists()

    def test_data_survives_reopen(self, tmp_path, u1):
        db_path = tmp_path / "ledger.db"
        with LedgerStore(db_path) as store:
            store.register_identity("u1")
            store.insert_profile(u1, name="Alice")
            store.insert_saving(u1, amount="12.50")

        with LedgerStore(db_path) as store:
            rows = store.select_savings(u1)
        assert [r["amount"] for r in rows] == [Decimal("12.50")]

    def test_indexes_exist(self, store):
        names = {
            row["name"]
            for row in store._get_conn().execute(
                "SELECT name FROM sqlite_master WHERE type = 'index'"
            )
        }
        assert {"idx_savings_user_id", "idx_savings_created_at"} <= names


class TestProfiles:
    """Profile creation, reading and renaming."""

    def test_self_insert(self, store, u1):
        row = store.insert_profile(u1, name="Alice")
        assert row["id"] == "u1"
        assert row["name"] == "Alice"
        assert row["created_at"]

    def test_insert_for_other_identity_denied(self, store, u1):
        with pytest.raises(PolicyDenied):
            store.insert_profile(u1, name="Bob", profile_id="u2")
        assert store.select_profiles(u1) == []

    def test_one_profile_per_identity(self, store, u1):
        store.insert_profile(u1, name="Alice")
        with pytest.raises(ConstraintViolation):
            store.insert_profile(u1, name="Alice again")

    def test_profile_requires_registered_identity(self, store):
        stranger = Identity("u9")
        with pytest.raises(ConstraintViolation):
            store.insert_profile(stranger, name="Mallory")

    def test_profiles_ordered_oldest_first(self, ledger, u1):
        assert [p["name"] for p in ledger.select_profiles(u1)] == ["Alice", "Bob"]

    def test_select_own_profile(self, ledger, u2):
        rows = ledger.select_profiles(u2, profile_id="u2")
        assert [r["name"] for r in rows] == ["Bob"]
        assert ledger.select_profiles(u2, profile_id="missing") == []

    def test_rename_own_profile(self, ledger, u1):
        rows = ledger.update_profile(u1, "u1", name="Alicia")
        assert [r["name"] for r in rows] == ["Alicia"]
        assert ledger.select_profiles(u1, profile_id="u1")[0]["name"] == "Alicia"

    def test_rename_other_profile_affects_nothing(self, ledger, u1):
        assert ledger.update_profile(u1, "u2", name="Hacked") == []
        assert ledger.select_profiles(u1, profile_id="u2")[0]["name"] == "Bob"

    def test_created_at_is_immutable(self, ledger, u1):
        before = ledger.select_profiles(u1, profile_id="u1")[0]["created_at"]
        ledger.update_profile(u1, "u1", name="Alicia")
        after = ledger.select_profiles(u1, profile_id="u1")[0]["created_at"]
        assert before == after


class TestSavingsWrites:
    """Ownership rules on inserts, updates and deletes."""

    def test_insert_defaults_owner_to_caller(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=Decimal("100"), description="gift")
        assert row["user_id"] == "u1"
        assert row["amount"] == Decimal("100")
        assert row["description"] == "gift"

    def test_description_defaults_to_empty(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=5)
        assert row["description"] == ""

    def test_insert_for_other_user_denied(self, ledger, u1, u2):
        with pytest.raises(PolicyDenied):
            ledger.insert_saving(u1, amount=Decimal("10"), user_id="u2")
        assert ledger.select_savings(u2) == []

    @pytest.mark.parametrize("amount", [0, "-10", Decimal("-0.01"), "0.00"])
    def test_non_positive_amount_rejected(self, ledger, u1, amount):
        with pytest.raises(ConstraintViolation):
            ledger.insert_saving(u1, amount=amount)
        assert ledger.select_savings(u1) == []

    @pytest.mark.parametrize("amount", ["abc", "NaN", "Infinity", True])
    def test_non_numeric_amount_rejected(self, ledger, u1, amount):
        with pytest.raises(ConstraintViolation):
            ledger.insert_saving(u1, amount=amount)

    def test_check_constraint_holds_without_python_validation(self, ledger):
        conn = ledger._get_conn()
        with pytest.raises(Exception) as exc_info:
            conn.execute(
                "INSERT INTO savings (id, user_id, amount, created_at) "
                "VALUES ('x', 'u1', '-1', '2025-01-01')"
            )
        assert "CHECK" in str(exc_info.value)

    def test_saving_requires_profile(self, store, u1):
        with pytest.raises(ConstraintViolation):
            store.insert_saving(u1, amount=1)

    def test_exact_decimal_round_trip(self, ledger, u1):
        ledger.insert_saving(u1, amount=Decimal("0.10"))
        ledger.insert_saving(u1, amount=Decimal("0.20"))
        amounts = [r["amount"] for r in ledger.select_savings(u1)]
        assert sum(amounts, Decimal(0)) == Decimal("0.30")

    def test_owner_deletes(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=10)
        assert ledger.delete_saving(u1, row["id"]) == 1
        assert ledger.select_savings(u1) == []

    def test_other_user_delete_affects_nothing(self, ledger, u1, u2):
        row = ledger.insert_saving(u2, amount=75)
        assert ledger.delete_saving(u1, row["id"]) == 0
        assert [r["id"] for r in ledger.select_savings(u1)] == [row["id"]]

    def test_delete_is_idempotent(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=10)
        assert ledger.delete_saving(u1, row["id"]) == 1
        assert ledger.delete_saving(u1, row["id"]) == 0

    def test_missing_and_forbidden_look_alike(self, ledger, u1, u2):
        row = ledger.insert_saving(u2, amount=75)
        assert ledger.delete_saving(u1, row["id"]) == ledger.delete_saving(u1, "no-such-id")

    def test_owner_updates(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=10, description="old")
        updated = ledger.update_saving(u1, row["id"], description="new", amount="11")
        assert updated[0]["description"] == "new"
        assert updated[0]["amount"] == Decimal("11")

    def test_other_user_update_affects_nothing(self, ledger, u1, u2):
        row = ledger.insert_saving(u2, amount=75, description="bob's")
        assert ledger.update_saving(u1, row["id"], description="mine now") == []
        assert ledger.select_savings(u1)[0]["description"] == "bob's"

    def test_update_cannot_reassign_owner(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=10)
        with pytest.raises(PolicyDenied):
            ledger.update_saving(u1, row["id"], user_id="u2")
        assert ledger.select_savings(u1)[0]["user_id"] == "u1"

    def test_update_rejects_non_positive_amount(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=10)
        with pytest.raises(ConstraintViolation):
            ledger.update_saving(u1, row["id"], amount=0)

    @pytest.mark.parametrize("amount", ["-10", 0, "abc"])
    def test_policy_checked_before_amount(self, ledger, u1, amount):
        with pytest.raises(PolicyDenied):
            ledger.insert_saving(u1, amount=amount, user_id="u2")
        with pytest.raises(PolicyDenied):
            ledger.insert_saving(None, amount=amount, user_id="u1")

    def test_update_policy_checked_before_amount(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=10)
        with pytest.raises(PolicyDenied):
            ledger.update_saving(u1, row["id"], amount=0, user_id="u2")
        assert ledger.select_savings(u1)[0]["amount"] == Decimal("10")

    def test_store_errors_share_a_base(self):
        assert issubclass(PolicyDenied, StoreError)
        assert issubclass(ConstraintViolation, StoreError)


class TestSavingsReads:
    """Shared reads and anonymous callers."""

    def test_every_member_sees_the_full_set(self, ledger, u1, u2):
        ledger.insert_saving(u1, amount=50)
        ledger.insert_saving(u2, amount=75)
        assert len(ledger.select_savings(u1)) == 2
        assert ledger.select_savings(u1) == ledger.select_savings(u2)

    def test_newest_first(self, ledger, u1, u2):
        first = ledger.insert_saving(u1, amount=1)
        second = ledger.insert_saving(u2, amount=2)
        third = ledger.insert_saving(u1, amount=3)
        ids = [r["id"] for r in ledger.select_savings(u1)]
        assert ids == [third["id"], second["id"], first["id"]]

    def test_filter_by_owner(self, ledger, u1, u2):
        ledger.insert_saving(u1, amount=50)
        ledger.insert_saving(u2, amount=75)
        rows = ledger.select_savings(u1, user_id="u2")
        assert [r["amount"] for r in rows] == [Decimal("75")]

    def test_anonymous_reads_are_empty(self, ledger, u1):
        ledger.insert_saving(u1, amount=50)
        assert ledger.select_savings(None) == []
        assert ledger.select_profiles(None) == []

    def test_anonymous_writes_are_denied(self, ledger, u1):
        row = ledger.insert_saving(u1, amount=50)
        with pytest.raises(PolicyDenied):
            ledger.insert_saving(None, amount=10, user_id="u1")
        with pytest.raises(PolicyDenied):
            ledger.insert_profile(None, name="Ghost", profile_id="u1")
        assert ledger.delete_saving(None, row["id"]) == 0
        assert ledger.update_saving(None, row["id"], description="x") == []
        assert ledger.update_profile(None, "u1", name="Ghost") == []


class TestIdentityRemoval:
    """Removing an identity cascades to its profile and savings."""

    def test_cascade(self, ledger, u1, u2):
        ledger.insert_saving(u1, amount=50)
        ledger.insert_saving(u2, amount=75)

        assert ledger.remove_identity("u1") is True

        assert [p["id"] for p in ledger.select_profiles(u2)] == ["u2"]
        assert [s["user_id"] for s in ledger.select_savings(u2)] == ["u2"]

    def test_remove_unknown_identity(self, store):
        assert store.remove_identity("nobody") is False

    def test_register_is_idempotent(self, store):
        store.register_identity("u1")
        count = store._get_conn().execute("SELECT COUNT(*) FROM users").fetchone()[0]
        assert count == 2


class TestConcurrentWrites:
    """Policy checks and writes stay atomic across threads and connections."""

    @pytest.fixture
    def stores(self, tmp_path, u1, u2):
        db_path = tmp_path / "ledger.db"
        with LedgerStore(db_path) as first, LedgerStore(db_path) as second:
            first.register_identity("u1")
            first.register_identity("u2")
            first.insert_profile(u1, name="Alice")
            first.insert_profile(u2, name="Bob")
            yield [first, second]

    def test_concurrent_deletes_count_exactly(self, stores, u1, u2):
        ids = [stores[0].insert_saving(u1, amount=i + 1)["id"] for i in range(20)]

        def delete_all(worker: int) -> tuple[Identity, int]:
            store = stores[worker % 2]
            identity = u2 if worker % 4 == 0 else u1
            return identity, sum(store.delete_saving(identity, sid) for sid in ids)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(delete_all, range(8)))

        assert sum(n for identity, n in results if identity == u1) == len(ids)
        assert all(n == 0 for identity, n in results if identity == u2)
        assert stores[1].select_savings(u1) == []

    def test_concurrent_inserts_respect_policies(self, stores, u1, u2):
        def insert(worker: int) -> str:
            store = stores[worker % 2]
            if worker % 2 == 0:
                store.insert_saving(u1, amount="1.10")
                return "ok"
            try:
                store.insert_saving(u2, amount="2", user_id="u1")
            except PolicyDenied:
                return "denied"
            return "written"

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(insert, range(40)))

        assert results.count("ok") == 20
        assert results.count("denied") == 20
        rows = stores[1].select_savings(u2)
        assert len(rows) == 20
        assert {row["user_id"] for row in rows} == {"u1"}
        assert sum((row["amount"] for row in rows), Decimal(0)) == Decimal("22.00")
