"""
Tests for the barter API endpoints.

Runs the real application factory with the in-memory store and ledger.
Validates request validation, response schemas, and error mapping.
"""

import pytest
from fastapi.testclient import TestClient

from barterdesk.core.config import Settings
from barterdesk.main import create_app

API = "/api/v1/barter"


def make_client(**overrides) -> TestClient:
    settings = Settings(
        rate_limit_enabled=overrides.pop("rate_limit_enabled", False),
        deadline_sweep_enabled=False,
        database_url=None,
        ledger_base_url=None,
        notification_webhook_urls=[],
        **overrides,
    )
    return TestClient(create_app(settings))


@pytest.fixture
def client():
    with make_client() as test_client:
        yield test_client


@pytest.fixture
def swap(client):
    """alice offers a 30000 card for bob's 20000 card."""
    for user_id, balance in (("alice", 50000), ("bob", 0)):
        resp = client.post(
            f"{API}/users",
            json={"display_name": user_id, "opening_balance": balance, "user_id": user_id},
        )
        assert resp.status_code == 201
    for owner, item_id, value in (("alice", "card-a", 30000), ("bob", "card-b", 20000)):
        resp = client.post(
            f"{API}/items",
            json={
                "owner_id": owner,
                "name": item_id,
                "estimated_market_value": value,
                "item_id": item_id,
            },
        )
        assert resp.status_code == 201

    resp = client.post(
        f"{API}/trades",
        json={
            "proposer_id": "alice",
            "receiver_id": "bob",
            "proposer_item_ids": ["card-a"],
            "receiver_item_ids": ["card-b"],
        },
    )
    assert resp.status_code == 201
    return resp.json()


class TestHealthEndpoint:
    """Tests for GET /api/v1/health."""

    def test_health_reports_version(self, client) -> None:
        resp = client.get("/api/v1/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": "0.1.0"}


class TestSecurityHeaders:
    """Tests for security headers on responses."""

    def test_security_headers_present(self, client) -> None:
        """All security headers must be present on every response."""
        resp = client.get("/api/v1/health")

        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "Content-Security-Policy" in resp.headers

    def test_headers_present_on_errors(self, client) -> None:
        resp = client.get(f"{API}/trades/missing")

        assert resp.status_code == 404
        assert resp.headers["X-Frame-Options"] == "DENY"


class TestTradeLifecycleEndpoints:
    """Drives one swap from proposal to completion over HTTP."""

    def test_proposal_is_pending(self, swap) -> None:
        assert swap["status"] == "PENDING_ACCEPTANCE"
        assert swap["proposer_item_ids"] == ["card-a"]
        assert swap["platform_fee_cents"] == 1500

    def test_full_lifecycle(self, client, swap) -> None:
        trade_id = swap["id"]

        resp = client.post(
            f"{API}/trades/{trade_id}/respond", json={"actor_id": "bob", "action": "accept"}
        )
        assert resp.status_code == 200
        assert resp.json()["escrow_amount_cents"] == 10000

        resp = client.post(f"{API}/trades/{trade_id}/escrow", json={})
        assert resp.status_code == 200

        escrow = client.get(f"{API}/trades/{trade_id}/escrow").json()
        assert escrow["required"] is True
        assert escrow["payer_id"] == "alice"
        assert escrow["hold"]["amount_cents"] == 10000

        for actor, number in (("alice", "TRK-A"), ("bob", "TRK-B")):
            resp = client.post(
                f"{API}/trades/{trade_id}/tracking",
                json={"actor_id": actor, "tracking_number": number},
            )
            assert resp.status_code == 200
        for actor in ("alice", "bob"):
            resp = client.post(f"{API}/trades/{trade_id}/satisfaction", json={"actor_id": actor})
            assert resp.status_code == 200
        assert resp.json()["status"] == "COMPLETED_AWAITING_RATING"

        for rater in ("alice", "bob"):
            resp = client.post(
                f"{API}/trades/{trade_id}/ratings",
                json={"rater_id": rater, "overall_score": 5, "public_comment": "smooth"},
            )
            assert resp.status_code == 201

        trade = client.get(f"{API}/trades/{trade_id}").json()
        assert trade["status"] == "COMPLETED"
        assert [h["to_status"] for h in trade["history"]][-1] == "COMPLETED"

        ratings = client.get(
            f"{API}/trades/{trade_id}/ratings", params={"viewer_id": "alice"}
        ).json()["ratings"]
        assert len(ratings) == 2
        assert all(r["is_revealed"] for r in ratings)

        bob = client.get(f"{API}/users/bob/standing").json()
        assert bob["balance"] == 10000
        assert [item["id"] for item in bob["inventory"]] == ["card-a"]
        alice = client.get(f"{API}/users/alice/standing").json()
        assert alice["balance"] == 40000
        assert alice["valuation_reputation_score"] == 90

    def test_reject_then_terminal(self, client, swap) -> None:
        trade_id = swap["id"]
        resp = client.post(
            f"{API}/trades/{trade_id}/respond", json={"actor_id": "bob", "action": "reject"}
        )
        assert resp.json()["status"] == "REJECTED"

        resp = client.post(f"{API}/trades/{trade_id}/cancel", json={"actor_id": "alice"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "TRADE_TERMINAL"

    def test_counter_offer_links_history(self, client, swap) -> None:
        resp = client.post(
            f"{API}/trades/{swap['id']}/respond",
            json={
                "actor_id": "bob",
                "action": "counter",
                "counter_terms": {
                    "proposer_item_ids": ["card-b"],
                    "receiver_item_ids": ["card-a"],
                },
                "counter_message": "my card for yours, no cash",
            },
        )
        assert resp.status_code == 200
        counter = resp.json()
        assert counter["parent_trade_id"] == swap["id"]
        assert counter["proposer_id"] == "bob"

        chain = client.get(f"{API}/trades/{counter['id']}/history").json()["trades"]
        assert [t["id"] for t in chain] == [swap["id"], counter["id"]]

    def test_user_trades_listing(self, client, swap) -> None:
        trades = client.get(f"{API}/users/bob/trades").json()["trades"]

        assert [t["id"] for t in trades] == [swap["id"]]


class TestDisputeEndpoints:
    """Tests for the dispute routes."""

    @pytest.fixture
    def shipped(self, client, swap):
        trade_id = swap["id"]
        client.post(f"{API}/users", json={"display_name": "mod", "user_id": "mod", "is_moderator": True})
        client.post(f"{API}/trades/{trade_id}/respond", json={"actor_id": "bob", "action": "accept"})
        client.post(f"{API}/trades/{trade_id}/escrow", json={})
        client.post(
            f"{API}/trades/{trade_id}/tracking",
            json={"actor_id": "alice", "tracking_number": "TRK-A"},
        )
        return trade_id

    def test_dispute_round_trip_to_full_refund(self, client, shipped) -> None:
        resp = client.post(
            f"{API}/trades/{shipped}/disputes",
            json={
                "initiator_id": "alice",
                "dispute_type": "INR",
                "statement": "Card never came",
                "attachments": ["photo.jpg"],
            },
        )
        assert resp.status_code == 201
        dispute = resp.json()
        assert dispute["status"] == "OPEN_AWAITING_RESPONSE"
        assert dispute["respondent_id"] == "bob"
        assert dispute["attachment_count"] == 1

        assert client.get(f"{API}/trades/{shipped}").json()["status"] == "DISPUTE_OPENED"

        resp = client.post(
            f"{API}/disputes/{dispute['id']}/response",
            json={"respondent_id": "bob", "statement": "I have not shipped yet"},
        )
        assert resp.json()["status"] == "IN_MEDIATION"

        resp = client.post(
            f"{API}/disputes/{dispute['id']}/resolution",
            json={"moderator_id": "mod", "resolution": "FULL_REFUND", "notes": "no shipment"},
        )
        assert resp.status_code == 200
        assert resp.json()["resolution"] == "FULL_REFUND"

        assert client.get(f"{API}/trades/{shipped}").json()["status"] == "DISPUTE_RESOLVED"
        assert client.get(f"{API}/users/alice/standing").json()["balance"] == 50000

    def test_non_moderator_cannot_resolve(self, client, shipped) -> None:
        dispute = client.post(
            f"{API}/trades/{shipped}/disputes",
            json={"initiator_id": "alice", "dispute_type": "INR", "statement": "Nothing"},
        ).json()

        resp = client.post(
            f"{API}/disputes/{dispute['id']}/resolution",
            json={"moderator_id": "bob", "resolution": "TRADE_UPHELD"},
        )

        assert resp.status_code == 403
        assert resp.json()["error"] == "ACTOR_NOT_PERMITTED"


class TestErrorMapping:
    """Domain errors surface with stable codes and status."""

    def test_unknown_trade_is_404(self, client) -> None:
        resp = client.get(f"{API}/trades/nope")

        assert resp.status_code == 404
        assert resp.json()["error"] == "TRADE_NOT_FOUND"

    def test_unknown_user_standing_is_404(self, client) -> None:
        resp = client.get(f"{API}/users/ghost/standing")

        assert resp.status_code == 404
        assert resp.json()["error"] == "USER_NOT_FOUND"

    def test_wrong_actor_is_403(self, client, swap) -> None:
        resp = client.post(
            f"{API}/trades/{swap['id']}/respond", json={"actor_id": "alice", "action": "accept"}
        )

        assert resp.status_code == 403
        assert resp.json()["error"] == "ACTOR_NOT_PERMITTED"

    def test_blank_display_name_is_422(self, client) -> None:
        resp = client.post(f"{API}/users", json={"display_name": "   "})

        assert resp.status_code == 422
        assert resp.json()["error"] == "MISSING_FIELD"

    def test_schema_violation_is_422(self, client) -> None:
        resp = client.post(
            f"{API}/items",
            json={"owner_id": "alice", "name": "card", "estimated_market_value": -1},
        )

        assert resp.status_code == 422

    def test_unknown_action_is_422(self, client, swap) -> None:
        resp = client.post(
            f"{API}/trades/{swap['id']}/respond", json={"actor_id": "bob", "action": "maybe"}
        )

        assert resp.status_code == 422


class TestMaintenanceEndpoint:
    def test_sweep_with_nothing_due(self, client, swap) -> None:
        resp = client.post(f"{API}/maintenance/sweep")

        assert resp.status_code == 200
        assert resp.json() == {
            "delivery_confirmed": [],
            "completed": [],
            "disputes_closed": [],
            "disputes_escalated": [],
            "failed": [],
        }


class TestRateLimiting:
    """Tests for rate limiting behavior."""

    def test_rate_limit_returns_429(self) -> None:
        """Exceeding rate limit returns HTTP 429."""
        with make_client(rate_limit_enabled=True, rate_limit_default="2/minute") as limited:
            statuses = [limited.get("/api/v1/health").status_code for _ in range(3)]
            resp = limited.get("/api/v1/health")

        assert statuses[:2] == [200, 200]
        assert statuses[2] == 429
        assert resp.json()["error"] == "RATE_LIMIT_EXCEEDED"


class TestCli:
    def test_parser_knows_every_command(self) -> None:
        from barterdesk.cli import build_parser, cmd_serve, cmd_sweep

        parser = build_parser()

        assert parser.parse_args(["sweep"]).func is cmd_sweep
        serve = parser.parse_args(["serve", "--port", "9000"])
        assert serve.func is cmd_serve
        assert serve.port == 9000

    def test_init_db_creates_schema(self, tmp_path, monkeypatch) -> None:
        from sqlalchemy import create_engine, inspect

        from barterdesk import cli

        url = f"sqlite:///{tmp_path / 'cli.db'}"
        monkeypatch.setattr(cli.settings, "database_url", url)

        cli.main(["init-db"])

        engine = create_engine(url)
        assert "barter_trades" in inspect(engine).get_table_names()
        engine.dispose()
