"""
Tests for the record store: basic CRUD, conditional updates and claims.

The claim tests pin the compare-and-swap contract every orchestrator step
relies on: exactly one caller moves a row out of an expected status, and
the loser gets None without the row changing.
"""

import pytest

from hostfix.fixes.schemas import FixStatus
from hostfix.projects.schemas import ProjectStatus
from hostfix.store import db, records
from hostfix.store.db import integrity_errors


@pytest.fixture
def fix(user, project):
    return records.insert("fix_requests", {
        "project_id": project["id"],
        "user_id": user["id"],
        "description": "Make the header blue please",
        "status": FixStatus.QUOTED,
        "price_in_cents": 300,
    })


class TestBasicOperations:
    def test_insert_assigns_id_and_timestamps(self, user):
        assert user["id"]
        assert user["created_at"]
        assert user["updated_at"]

    def test_get_missing_returns_none(self):
        assert records.get("users", "does-not-exist") is None

    def test_update_returns_row(self, user):
        updated = records.update("users", user["id"], {"full_name": "Alice Smith"})
        assert updated["full_name"] == "Alice Smith"
        assert updated["email"] == user["email"]

    def test_update_missing_returns_none(self):
        assert records.update("users", "nope", {"full_name": "x"}) is None

    def test_unknown_column_rejected(self, user):
        with pytest.raises(ValueError):
            records.update("users", user["id"], {"favourite_colour": "blue"})

    def test_json_columns_round_trip(self, fix):
        triage = {"complexity": "simple", "affected_files": ["a.tsx"], "confidence": 0.5}
        updated = records.update("fix_requests", fix["id"], {"triage_result": triage})
        assert updated["triage_result"] == triage
        assert records.get("fix_requests", fix["id"])["triage_result"] == triage

    def test_list_by_with_in_and_exclude(self, user, project):
        records.insert("projects", {"user_id": user["id"], "name": "Old", "status": ProjectStatus.DELETED})
        live = records.list_by("projects", user_id=user["id"], exclude={"status": ProjectStatus.DELETED})
        assert [p["id"] for p in live] == [project["id"]]

        both = records.list_by("projects", status=[ProjectStatus.ACTIVE, ProjectStatus.DELETED])
        assert len(both) == 2

    def test_list_by_none_means_is_null(self, user, project):
        assert records.list_by("users", stripe_customer_id=None)[0]["id"] == user["id"]

    def test_list_by_rejects_injected_order(self, user):
        with pytest.raises(ValueError):
            records.list_by("users", order_by="id; DROP TABLE users")

    def test_increment(self, user):
        records.increment("users", user["id"], "fix_count")
        assert records.increment("users", user["id"], "fix_count")["fix_count"] == 2


class TestConditionalUpdates:
    def test_claim_wins_from_expected_status(self, fix):
        claimed = records.claim("fix_requests", fix["id"], [FixStatus.QUOTED], FixStatus.AWAITING_PAYMENT)
        assert claimed["status"] == FixStatus.AWAITING_PAYMENT

    def test_second_claim_loses(self, fix):
        first = records.claim("fix_requests", fix["id"], [FixStatus.QUOTED], FixStatus.AWAITING_PAYMENT)
        second = records.claim("fix_requests", fix["id"], [FixStatus.QUOTED], FixStatus.AWAITING_PAYMENT)
        assert first is not None
        assert second is None

    def test_lost_claim_leaves_row_untouched(self, fix):
        assert records.claim("fix_requests", fix["id"], [FixStatus.DEPLOYED], FixStatus.FAILED) is None
        assert records.get("fix_requests", fix["id"])["status"] == FixStatus.QUOTED

    def test_claim_sets_extra_fields(self, fix):
        claimed = records.claim(
            "fix_requests", fix["id"], [FixStatus.QUOTED], FixStatus.IN_PROGRESS, error_log="retry",
        )
        assert claimed["error_log"] == "retry"

    def test_claim_needs_expected_status(self, fix):
        with pytest.raises(ValueError):
            records.claim("fix_requests", fix["id"], [], FixStatus.FAILED)

    def test_update_if_null_predicate(self, fix):
        paid = records.update_if("fix_requests", fix["id"], {"paid_at": records.now_iso()}, paid_at=None)
        assert paid["paid_at"]
        assert records.update_if("fix_requests", fix["id"], {"paid_at": records.now_iso()}, paid_at=None) is None


class TestConstraints:
    def test_ignore_conflicts_returns_none_on_duplicate(self, user):
        fields = {
            "user_id": user["id"],
            "stripe_payment_intent_id": "pi_1",
            "type": "fix",
            "amount_in_cents": 300,
            "status": "paid",
        }
        assert records.insert("invoices", fields, ignore_conflicts=True) is not None
        assert records.insert("invoices", fields, ignore_conflicts=True) is None
        assert records.count_by("invoices", user_id=user["id"]) == 1

    def test_live_subdomains_are_unique(self, user, project):
        with pytest.raises(integrity_errors()):
            records.insert("projects", {"user_id": user["id"], "name": "Copy", "subdomain": "landing"})

    def test_deleted_project_frees_its_subdomain(self, user, project):
        records.update("projects", project["id"], {"status": ProjectStatus.DELETED})
        again = records.insert("projects", {"user_id": user["id"], "name": "Again", "subdomain": "landing"})
        assert again["subdomain"] == "landing"


class TestExecute:
    def test_fetch_modes(self, user):
        row = db.execute("SELECT id, email FROM users WHERE id = %s", (user["id"],), fetch="one")
        assert row == {"id": user["id"], "email": user["email"]}
        assert db.execute("SELECT id FROM users WHERE id = %s", ("nobody",), fetch="one") is None
        assert db.execute("SELECT id FROM users", fetch="all") == [{"id": user["id"]}]
        assert db.execute("UPDATE users SET fix_count = 2 WHERE id = %s", (user["id"],), fetch="rowcount") == 1
        assert db.execute("UPDATE users SET fix_count = 3 WHERE id = %s", (user["id"],)) is None
        assert records.get("users", user["id"])["fix_count"] == 3

    def test_failed_statement_writes_nothing(self, user):
        with pytest.raises(integrity_errors()):
            db.execute(
                "INSERT INTO users (id, external_auth_id, email) VALUES (%s, %s, %s)",
                ("u-dup", "auth|dup", user["email"]),
            )
        assert records.get("users", "u-dup") is None
