"""
Unit tests for the sync engine — scripted Teller source, in-memory store.
"""
from datetime import datetime, timezone

import pytest

from tellersync.services.sync import (
    MODE_DELTA,
    MODE_FULL,
    AccountError,
    SyncEngine,
    newest_id,
    oldest_first,
)
from tellersync.services.teller import CredentialError, UpstreamError
from tests.fakes import GOOD_TOKEN, FakeTellerSource, make_account, make_txn

FIXED_NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _engine(source, store, **kwargs) -> SyncEngine:
    return SyncEngine(source, store, clock=lambda: FIXED_NOW, **kwargs)


class CountIgnoringSource(FakeTellerSource):
    """Upstream that returns every record newer than from_id regardless of count."""

    def list_transactions(self, account_id, credential, count=None, from_id=None, **kw):
        return super().list_transactions(account_id, credential, None, from_id)


def _source_with(*txn_ids, account_id="acc_a") -> FakeTellerSource:
    """txn_ids are given newest-first, the way Teller lists them."""
    n = len(txn_ids)
    return FakeTellerSource(
        accounts=[make_account(account_id)],
        transactions={account_id: [make_txn(t, account_id, day=n - i) for i, t in enumerate(txn_ids)]},
    )


# ── Ordering contract ────────────────────────────────────────────────────────

class TestOrderingHelpers:
    def test_oldest_first_reverses(self):
        page = [{"id": "t3"}, {"id": "t2"}, {"id": "t1"}]
        assert [t["id"] for t in oldest_first(page)] == ["t1", "t2", "t3"]

    def test_oldest_first_does_not_mutate_input(self):
        page = [{"id": "t2"}, {"id": "t1"}]
        oldest_first(page)
        assert [t["id"] for t in page] == ["t2", "t1"]

    def test_newest_id_is_head_of_fetch(self):
        assert newest_id([{"id": "t9"}, {"id": "t8"}]) == "t9"

    def test_newest_id_empty(self):
        assert newest_id([]) is None


# ── Delta sync scenarios ─────────────────────────────────────────────────────

class TestDeltaSync:
    def test_first_pass_writes_oldest_first_and_sets_cursor(self, store):
        source = _source_with("t3", "t2", "t1")

        summary = _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert store.txn_writes() == ["t1", "t2", "t3"]
        assert store.cursors["acc_a"] == "t3"
        assert summary.accounts_processed == 1
        assert summary.transactions_written == 3
        assert summary.errors == []

    def test_cursor_bounds_fetch_and_advances(self, store):
        source = _source_with("t5", "t4", "t1")
        store.transactions["t1"] = make_txn("t1", "acc_a")
        store.cursors["acc_a"] = "t1"

        summary = _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert ("transactions", "acc_a", 500, "t1") in source.calls
        assert store.txn_writes() == ["t4", "t5"]
        assert store.cursors["acc_a"] == "t5"
        assert summary.transactions_written == 2

    def test_cursor_write_is_last_op_of_pass(self, store):
        source = _source_with("t3", "t2", "t1")

        _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert store.ops[-1] == ("cursor", "acc_a", "t3")
        assert store.ops[:2] == [("institution", "chase"), ("account", "acc_a")]

    def test_account_upserted_before_transactions(self, store):
        source = _source_with("t1")

        _engine(source, store).run_delta_sync(GOOD_TOKEN)

        kinds = [op[0] for op in store.ops]
        assert kinds.index("account") < kinds.index("txn")

    def test_transaction_without_account_id_gets_owner(self, store):
        source = FakeTellerSource(
            accounts=[make_account("acc_a")],
            transactions={"acc_a": [{"id": "t1", "amount": "1.00"}]},
        )

        _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert store.transactions["t1"]["account_id"] == "acc_a"


class TestIdempotence:
    def test_second_run_without_new_data_writes_nothing(self, store):
        source = _source_with("t3", "t2", "t1")
        engine = _engine(source, store)

        engine.run_delta_sync(GOOD_TOKEN)
        second = engine.run_delta_sync(GOOD_TOKEN)

        assert second.transactions_written == 0
        assert second.accounts_processed == 1
        assert store.cursors["acc_a"] == "t3"
        assert len(store.transactions) == 3

    def test_new_upstream_activity_is_picked_up(self, store):
        source = _source_with("t2", "t1")
        engine = _engine(source, store)
        engine.run_delta_sync(GOOD_TOKEN)

        source.post("acc_a", make_txn("t3", "acc_a", day=5))
        summary = engine.run_delta_sync(GOOD_TOKEN)

        assert summary.transactions_written == 1
        assert store.cursors["acc_a"] == "t3"

    def test_redelivered_transaction_overwrites(self, store):
        source = _source_with("t1")
        engine = _engine(source, store)
        engine.run_full_sync(GOOD_TOKEN)

        source.transactions["acc_a"][0]["status"] = "posted"
        source.transactions["acc_a"][0]["amount"] = "-11.50"
        engine.run_full_sync(GOOD_TOKEN)

        assert len(store.transactions) == 1
        assert store.transactions["t1"]["amount"] == "-11.50"


class TestPartialFailure:
    def test_failed_write_keeps_cursor(self, store):
        source = _source_with("t3", "t2", "t1")
        store.fail_on = {"t2"}

        summary = _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert "acc_a" not in store.cursors
        assert store.txn_writes() == ["t1"]
        assert summary.accounts_processed == 0
        assert summary.errors == [AccountError(account_id="acc_a", reason="write failed for t2")]

    def test_rerun_after_failure_has_no_gaps_or_duplicates(self, store):
        source = _source_with("t3", "t2", "t1")
        engine = _engine(source, store)
        store.fail_on = {"t2"}
        engine.run_delta_sync(GOOD_TOKEN)

        store.fail_on = set()
        summary = engine.run_delta_sync(GOOD_TOKEN)

        assert sorted(store.transactions) == ["t1", "t2", "t3"]
        assert store.cursors["acc_a"] == "t3"
        assert summary.transactions_written == 3
        assert summary.errors == []

    def test_cursor_never_references_unwritten_transaction(self, store):
        source = _source_with("t3", "t2", "t1")
        engine = _engine(source, store)
        store.fail_on = {"t3"}
        engine.run_delta_sync(GOOD_TOKEN)
        store.fail_on = set()
        engine.run_delta_sync(GOOD_TOKEN)

        assert store.violations == []


class TestAccountIsolation:
    def test_one_failing_account_does_not_block_others(self, store):
        source = FakeTellerSource(
            accounts=[make_account("acc_a"), make_account("acc_b")],
            transactions={"acc_a": [make_txn("a2", "acc_a", 2), make_txn("a1", "acc_a", 1)]},
            failures={"acc_b": UpstreamError("Teller /accounts/acc_b/transactions returned 500", status_code=500)},
        )

        summary = _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert summary.accounts_processed == 1
        assert summary.transactions_written == 2
        assert [e.account_id for e in summary.errors] == ["acc_b"]
        assert "500" in summary.errors[0].reason
        assert store.cursors == {"acc_a": "a2"}
        assert "acc_b" in store.accounts

    def test_timeout_is_an_account_failure(self, store):
        source = FakeTellerSource(
            accounts=[make_account("acc_a"), make_account("acc_b")],
            transactions={"acc_b": [make_txn("b1", "acc_b")]},
            failures={"acc_a": UpstreamError("Teller request timed out after 30.0s")},
        )

        summary = _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert summary.errors[0].account_id == "acc_a"
        assert "timed out" in summary.errors[0].reason
        assert store.cursors == {"acc_b": "b1"}

    def test_account_without_id_is_reported(self, store):
        source = FakeTellerSource(accounts=[{"name": "broken"}, make_account("acc_a")])

        summary = _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert summary.accounts_processed == 1
        assert summary.errors[0].account_id == ""

    def test_response_payload(self, store):
        source = FakeTellerSource(
            accounts=[make_account("acc_a"), make_account("acc_b")],
            transactions={"acc_a": [make_txn("a1", "acc_a")]},
            failures={"acc_b": UpstreamError("boom")},
        )

        summary = _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert summary.to_response() == {
            "ok": True,
            "mode": MODE_DELTA,
            "accounts": 1,
            "transactions": 1,
            "errors": [{"account_id": "acc_b", "reason": "boom"}],
        }


# ── Edge cases ───────────────────────────────────────────────────────────────

class TestEdgeCases:
    def test_no_transactions_leaves_cursor_unset(self, store):
        source = FakeTellerSource(accounts=[make_account("acc_a")])

        summary = _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert "acc_a" in store.accounts
        assert store.cursors == {}
        assert summary.accounts_processed == 1
        assert summary.transactions_written == 0

    def test_page_size_bounds_single_fetch_and_later_passes_catch_up(self, store):
        source = _source_with("t5", "t4", "t3", "t2", "t1")
        store.transactions["t1"] = make_txn("t1", "acc_a")
        store.cursors["acc_a"] = "t1"
        engine = _engine(source, store)

        first = engine.run_delta_sync(GOOD_TOKEN, page_size=2)
        assert first.transactions_written == 2
        assert store.cursors["acc_a"] == "t3"

        second = engine.run_delta_sync(GOOD_TOKEN, page_size=2)
        assert second.transactions_written == 2
        assert store.cursors["acc_a"] == "t5"
        assert sorted(store.transactions) == ["t1", "t2", "t3", "t4", "t5"]

    def test_cursor_is_monotonic_across_passes(self, store):
        source = _source_with("t1")
        engine = _engine(source, store)
        seen = []
        for i in range(2, 6):
            engine.run_delta_sync(GOOD_TOKEN)
            seen.append(store.cursors["acc_a"])
            source.post("acc_a", make_txn(f"t{i}", "acc_a", day=i))
        engine.run_delta_sync(GOOD_TOKEN)
        seen.append(store.cursors["acc_a"])

        assert seen == ["t1", "t2", "t3", "t4", "t5"]

    def test_oversized_upstream_page_is_capped(self, store):
        source = CountIgnoringSource(
            accounts=[make_account("acc_a")],
            transactions={"acc_a": [make_txn(f"t{i}", "acc_a", day=i) for i in (3, 2, 1)]},
        )

        summary = _engine(source, store).run_full_sync(GOOD_TOKEN, page_size=2)

        assert summary.transactions_written == 2
        assert store.cursors["acc_a"] == "t3"

    def test_oversized_delta_page_keeps_records_next_to_cursor(self, store):
        source = CountIgnoringSource(
            accounts=[make_account("acc_a")],
            transactions={"acc_a": [make_txn(f"t{i}", "acc_a", day=i) for i in (5, 4, 3, 2, 1)]},
        )
        store.transactions["t1"] = make_txn("t1", "acc_a")
        store.cursors["acc_a"] = "t1"
        engine = _engine(source, store)

        first = engine.run_delta_sync(GOOD_TOKEN, page_size=2)
        assert store.txn_writes() == ["t2", "t3"]
        assert store.cursors["acc_a"] == "t3"
        assert first.transactions_written == 2

        engine.run_delta_sync(GOOD_TOKEN, page_size=2)
        assert store.txn_writes() == ["t2", "t3", "t4", "t5"]
        assert store.cursors["acc_a"] == "t5"
        assert sorted(store.transactions) == ["t1", "t2", "t3", "t4", "t5"]
        assert store.violations == []

    @pytest.mark.parametrize("page_size", [0, -1])
    def test_invalid_page_size_rejected(self, store, page_size):
        with pytest.raises(ValueError):
            _engine(_source_with("t1"), store).run_delta_sync(GOOD_TOKEN, page_size=page_size)

    def test_accounts_without_institution_skip_institution_upsert(self, store):
        account = make_account("acc_a")
        account.pop("institution")
        source = FakeTellerSource(accounts=[account])

        _engine(source, store).run_delta_sync(GOOD_TOKEN)

        assert store.institutions == {}
        assert "acc_a" in store.accounts


# ── Credential errors ────────────────────────────────────────────────────────

class TestCredentialErrors:
    def test_rejected_credential_aborts_before_touching_accounts(self, store):
        source = _source_with("t1")

        with pytest.raises(CredentialError):
            _engine(source, store).run_delta_sync("token_revoked")

        assert store.ops == []

    def test_missing_credential(self, store):
        with pytest.raises(CredentialError):
            _engine(_source_with("t1"), store).run_full_sync("")


# ── Full sync ────────────────────────────────────────────────────────────────

class TestFullSync:
    def test_full_sync_ignores_existing_cursor(self, store):
        source = _source_with("t3", "t2", "t1")
        store.cursors["acc_a"] = "t2"

        summary = _engine(source, store).run_full_sync(GOOD_TOKEN, page_size=50)

        assert ("transactions", "acc_a", 50, None) in source.calls
        assert summary.mode == MODE_FULL
        assert store.txn_writes() == ["t1", "t2", "t3"]
        assert store.cursors["acc_a"] == "t3"

    def test_full_sync_writes_institution(self, store):
        _engine(_source_with("t1"), store).run_full_sync(GOOD_TOKEN)

        assert store.institutions == {"chase": "Chase"}


# ── Concurrency ──────────────────────────────────────────────────────────────

class TestConcurrentPasses:
    def test_pool_matches_sequential_outcome(self, store):
        accounts = [make_account(f"acc_{i}") for i in range(6)]
        transactions = {
            a["id"]: [make_txn(f"{a['id']}_t{d}", a["id"], day=d) for d in (3, 2, 1)]
            for a in accounts
        }
        source = FakeTellerSource(
            accounts=accounts,
            transactions=transactions,
            failures={"acc_4": UpstreamError("boom")},
        )

        summary = _engine(source, store, max_workers=4).run_delta_sync(GOOD_TOKEN)

        assert summary.accounts_processed == 5
        assert summary.transactions_written == 15
        assert [e.account_id for e in summary.errors] == ["acc_4"]
        for a in accounts:
            if a["id"] == "acc_4":
                continue
            acc = a["id"]
            assert store.txn_writes(acc) == [f"{acc}_t1", f"{acc}_t2", f"{acc}_t3"]
            assert store.cursors[acc] == f"{acc}_t3"
        assert store.violations == []
