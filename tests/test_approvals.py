import json
from datetime import datetime, timedelta, timezone

from concierge.approvals import ApprovalLookup, ApprovalRegistry

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
CARDS = [{"playerName": "Ohtani", "year": "2018", "grade": "10"}]


def test_resolve_for_matching_customer():
    registry = ApprovalRegistry()
    req = registry.create(customer_name=" Alice Sato ", email="Alice@Example.com", cards=CARDS, created_at=NOW)

    status, found = registry.resolve_for("alice@example.com", req.approval_key, now=NOW + timedelta(days=1))

    assert status is ApprovalLookup.OK
    assert found.customer_name == "Alice Sato"
    assert found.cards == CARDS


def test_resolve_for_unknown_or_foreign_key():
    registry = ApprovalRegistry()
    req = registry.create(customer_name="Bob", email="bob@example.com", cards=[], created_at=NOW)

    assert registry.resolve_for("alice@example.com", "missing", now=NOW) == (ApprovalLookup.NOT_FOUND, None)
    assert registry.resolve_for("alice@example.com", req.approval_key, now=NOW) == (ApprovalLookup.NOT_FOUND, None)


def test_link_expires_after_ttl():
    registry = ApprovalRegistry(link_ttl=timedelta(days=14))
    req = registry.create(customer_name="Alice", email="alice@example.com", cards=[], created_at=NOW)

    assert registry.resolve_for("alice@example.com", req.approval_key, now=NOW + timedelta(days=13))[0] is ApprovalLookup.OK
    assert registry.resolve_for("alice@example.com", req.approval_key, now=NOW + timedelta(days=14))[0] is ApprovalLookup.EXPIRED


def test_completed_request_cannot_be_reopened():
    registry = ApprovalRegistry()
    req = registry.create(customer_name="Alice", email="alice@example.com", cards=CARDS, created_at=NOW)

    assert registry.complete(req.approval_key, {"0": "approved"}) is not None
    assert registry.complete(req.approval_key, {"0": "rejected"}) is None
    assert registry.get(req.approval_key).responses == {"0": "approved"}
    assert registry.resolve_for("alice@example.com", req.approval_key, now=NOW)[0] is ApprovalLookup.EXPIRED


def test_registry_persists_to_json(tmp_path):
    path = tmp_path / "approvals.json"
    first = ApprovalRegistry(path)
    req = first.create(customer_name="佐藤 アリス", email="alice@example.com", cards=CARDS, created_at=NOW)

    second = ApprovalRegistry(path)
    loaded = second.get(req.approval_key)

    assert loaded is not None
    assert loaded.customer_name == "佐藤 アリス"
    assert loaded.created() == NOW
    assert loaded.status == "pending"


def test_registry_reads_camelcase_file_from_js_server(tmp_path):
    path = tmp_path / "approval_requests.json"
    path.write_text(
        json.dumps(
            {
                "k-1": {
                    "customerName": "Alice",
                    "email": "Alice@Example.com",
                    "cards": CARDS,
                    "createdAt": "2026-10-18T09:00:00.000Z",
                    "status": "pending",
                    "responses": {},
                    "submissionId": 17,
                },
                "k-bad": {"customerName": "No date", "email": "x@example.com"},
                "k-junk": "not a record",
            }
        ),
        encoding="utf-8",
    )

    registry = ApprovalRegistry(path)

    req = registry.get("k-1")
    assert req is not None
    assert req.customer_name == "Alice"
    assert req.email == "alice@example.com"
    assert req.created() == NOW
    assert registry.get("k-bad") is None
    assert registry.get("k-junk") is None
    assert registry.resolve_for("alice@example.com", "k-1", now=NOW + timedelta(days=1))[0] is ApprovalLookup.OK


def test_registry_ignores_unreadable_file(tmp_path):
    path = tmp_path / "approval_requests.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    assert ApprovalRegistry(path).get("k-1") is None
