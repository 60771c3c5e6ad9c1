"""
Tests for the HTTP API.

Uses FastAPI's TestClient against an app wired to the in-memory services
from conftest.
"""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from conftest import STX, USDCX, USER, VEX
from velumx.models.liquidity import PoolReserves


LP_BALANCE = 150_000_000_000


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


def liquidity_event(**overrides) -> dict:
    body = {
        "user_address": USER,
        "pool_id": "STX-USDCx",
        "action": "add",
        "lp_token_amount": LP_BALANCE,
        "token_a_amount": 100_000_000_000,
        "token_b_amount": 250_000_000_000,
        "value_usd": 500_000.0,
        "transaction_hash": "0xabc",
        "block_height": 1200,
    }
    body.update(overrides)
    return body


# =============================================================================
# SYSTEM
# =============================================================================

class TestSystemEndpoints:
    """Test root and health endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["cache"] == "connected"
        assert body["database"] == "connected"

    def test_health_with_database_down(self, client, repository):
        repository.available = False
        body = client.get("/api/health").json()
        assert body["status"] == "degraded"


# =============================================================================
# POOLS
# =============================================================================

class TestPoolEndpoints:
    """Test pool listing and lookups."""

    def test_list_pools(self, client):
        response = client.get("/api/liquidity/pools")

        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == ["STX-USDCx", "STX-VEX"]

    def test_list_pools_paginated(self, client):
        response = client.get("/api/liquidity/pools", params={"limit": 1, "offset": 1})
        assert [p["id"] for p in response.json()] == ["STX-VEX"]

    def test_get_pool(self, client):
        body = client.get("/api/liquidity/pools/STX-USDCx").json()
        assert body["token_a"]["symbol"] == "STX"
        assert body["reserve_a"] == 1_000_000_000_000

    def test_unknown_pool_is_404(self, client):
        response = client.get("/api/liquidity/pools/USDCx-VEX")
        assert response.status_code == 404
        assert "USDCx-VEX" in response.json()["detail"]

    def test_search(self, client):
        body = client.get("/api/liquidity/pools/search", params={"q": "vex"}).json()
        assert [p["id"] for p in body] == ["STX-VEX"]

    def test_featured(self, client):
        body = client.get("/api/liquidity/pools/featured").json()
        assert [p["id"] for p in body] == ["STX-USDCx"]

    def test_popular(self, client):
        body = client.get("/api/liquidity/pools/popular", params={"limit": 1}).json()
        assert [p["id"] for p in body] == ["STX-USDCx"]

    def test_stats(self, client):
        body = client.get("/api/liquidity/pools/stats").json()
        assert body["total_pools"] == 2
        assert body["featured_pools"] == 1

    def test_metadata(self, client):
        body = client.get("/api/liquidity/pools/STX-USDCx/metadata").json()
        assert body["name"] == "STX/USDCx"
        assert body["risk_level"] == "low"

    def test_refresh(self, client):
        response = client.post("/api/liquidity/pools/refresh")
        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_chain_outage_is_503(self, client, source):
        source.available = False

        response = client.get("/api/liquidity/pools")

        assert response.status_code == 503
        assert response.json()["source"] == "discovery"

    def test_discovery_status(self, client):
        body = client.get("/api/liquidity/discovery/status").json()
        assert body["token_count"] == 3
        assert body["running"] is False

    def test_tokens(self, client):
        body = client.get("/api/liquidity/tokens").json()
        assert [t["symbol"] for t in body["tokens"]] == ["STX", "USDCx", "VEX"]


# =============================================================================
# ANALYTICS
# =============================================================================

class TestAnalyticsEndpoints:
    """Test analytics, history and projections."""

    def test_analytics(self, client):
        body = client.get("/api/liquidity/analytics/STX-USDCx").json()
        assert body["tvl"] == pytest.approx(5_000_000)
        assert body["apr"] == pytest.approx(10.95)

    def test_analytics_outage_serves_zeroes(self, client, source):
        source.available = False

        response = client.get("/api/liquidity/analytics/STX-USDCx")

        assert response.status_code == 200
        assert response.json()["tvl"] == 0.0

    def test_analytics_unknown_pool(self, client):
        assert client.get("/api/liquidity/analytics/USDCx-VEX").status_code == 404

    def test_malformed_pool_id_is_400(self, client):
        """Identifiers that cannot form a cache key are rejected."""
        assert client.get("/api/liquidity/analytics/STX:USDCx").status_code == 400

    def test_summary(self, client):
        body = client.get("/api/liquidity/analytics/summary").json()
        assert body["total_tvl"] == pytest.approx(6_000_000)

    def test_history(self, client):
        response = client.get("/api/liquidity/analytics/STX-USDCx/history", params={"timeframe": "30d"})
        assert response.status_code == 200
        assert response.json() == []

    def test_history_unknown_pool(self, client):
        assert client.get("/api/liquidity/analytics/USDCx-VEX/history").status_code == 404

    def test_history_bad_timeframe(self, client):
        response = client.get("/api/liquidity/analytics/STX-USDCx/history", params={"timeframe": "2w"})
        assert response.status_code == 422

    def test_projection(self, client):
        body = client.get(
            "/api/liquidity/analytics/STX-USDCx/projection", params={"amount_usd": 50_000},
        ).json()
        assert body["projected_daily"] == pytest.approx(15.0)

    def test_projection_requires_positive_amount(self, client):
        response = client.get("/api/liquidity/analytics/STX-USDCx/projection", params={"amount_usd": 0})
        assert response.status_code == 422


# =============================================================================
# CALCULATIONS
# =============================================================================

class TestCalculationEndpoints:
    """Test deposit and withdrawal quotes."""

    def test_optimal_from_one_amount(self, client):
        response = client.post("/api/liquidity/calculate-optimal", json={
            "token_a": "STX", "token_b": "USDCx", "amount_a": 100_000_000,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["amount_b"] == 250_000_000
        assert body["lp_tokens"] == 150_000_000
        assert body["price_impact"] == pytest.approx(0.0)

    def test_optimal_with_both_amounts(self, client):
        body = client.post("/api/liquidity/calculate-optimal", json={
            "token_a": "STX", "token_b": "USDCx", "amount_a": 100_000_000, "amount_b": 100_000_000,
        }).json()
        assert (body["amount_a"], body["amount_b"]) == (40_000_000, 100_000_000)

    def test_optimal_tokens_by_address_in_reverse_order(self, client):
        body = client.post("/api/liquidity/calculate-optimal", json={
            "token_a": USDCX.address, "token_b": STX.address, "amount_a": 250_000_000,
        }).json()
        assert body["amount_b"] == 100_000_000

    def test_optimal_inactive_pool(self, client, source):
        source.set_pool(USDCX.address, VEX.address, PoolReserves(reserve_a=0, reserve_b=0, total_supply=0))

        body = client.post("/api/liquidity/calculate-optimal", json={
            "token_a": "USDCx", "token_b": "VEX", "amount_a": 4, "amount_b": 9,
        }).json()

        assert body == {"amount_a": 4, "amount_b": 9, "ratio": 1.0, "price_impact": 0.0, "lp_tokens": 6}

    def test_optimal_without_amounts_is_400(self, client):
        response = client.post("/api/liquidity/calculate-optimal", json={"token_a": "STX", "token_b": "USDCx"})
        assert response.status_code == 400

    def test_unknown_token_is_404(self, client):
        response = client.post("/api/liquidity/calculate-optimal", json={
            "token_a": "STX", "token_b": "BTC", "amount_a": 1,
        })
        assert response.status_code == 404

    def test_remove(self, client):
        body = client.post("/api/liquidity/calculate-remove", json={
            "token_a": "STX", "token_b": "USDCx", "lp_token_amount": LP_BALANCE,
        }).json()
        assert body == {"share_a": 100_000_000_000, "share_b": 250_000_000_000, "percentage": 10.0}

    def test_remove_from_empty_pool_is_400(self, client, source):
        source.set_pool(USDCX.address, VEX.address, PoolReserves(reserve_a=0, reserve_b=0, total_supply=0))

        response = client.post("/api/liquidity/calculate-remove", json={
            "token_a": "USDCx", "token_b": "VEX", "lp_token_amount": 1,
        })

        assert response.status_code == 400
        assert response.json()["detail"] == "Pool has no liquidity"

    def test_remove_without_pool_is_404(self, client):
        response = client.post("/api/liquidity/calculate-remove", json={
            "token_a": "USDCx", "token_b": "VEX", "lp_token_amount": 1,
        })
        assert response.status_code == 404


# =============================================================================
# SUGGESTIONS
# =============================================================================

class TestSuggestionEndpoints:
    """Test risk, recommendation and rebalancing endpoints."""

    def test_risk(self, client):
        body = client.get("/api/liquidity/risk/STX-USDCx").json()

        assert body["overall_risk"] == "low"
        assert body["risk_score"] == pytest.approx(27.75)
        assert body["factors"]["concentration"]["level"] == "high"

    def test_risk_unknown_pool(self, client):
        assert client.get("/api/liquidity/risk/USDCx-VEX").status_code == 404

    def test_risk_during_outage_is_503(self, client, source):
        source.available = False
        assert client.get("/api/liquidity/risk/STX-USDCx").status_code == 503

    def test_recommendations(self, client):
        body = client.get("/api/liquidity/recommendations").json()

        assert [r["pool"]["id"] for r in body] == ["STX-USDCx", "STX-VEX"]
        assert body[0]["score"] == pytest.approx(71.6)

    def test_recommendation_filters(self, client):
        response = client.get("/api/liquidity/recommendations", params={
            "risk_tolerance": "conservative", "min_apr": 5, "max_risk": "medium", "limit": 5,
        })

        assert response.status_code == 200
        assert [r["pool"]["id"] for r in response.json()] == ["STX-USDCx"]

    @pytest.mark.parametrize("params", [
        {"risk_tolerance": "reckless"},
        {"max_risk": "extreme"},
        {"limit": 0},
        {"min_tvl": -1},
    ])
    def test_recommendation_validation(self, client, params):
        assert client.get("/api/liquidity/recommendations", params=params).status_code == 422

    def test_rebalancing(self, client, source):
        source.set_lp_balance(USER, STX.address, USDCX.address, LP_BALANCE)

        body = client.get(f"/api/liquidity/rebalancing/{USER}").json()

        assert body["user_address"] == USER
        assert [p["pool_id"] for p in body["current_positions"]] == ["STX-USDCx"]
        assert [(s["action"], s["pool_id"]) for s in body["suggestions"]] == [("add", "STX-VEX")]
        assert body["portfolio_health"]["diversification"] == 25.0

    def test_rebalancing_without_positions(self, client):
        body = client.get(f"/api/liquidity/rebalancing/{USER}").json()

        assert body["current_positions"] == []
        assert {s["pool_id"] for s in body["suggestions"]} == {"STX-USDCx", "STX-VEX"}
        assert body["portfolio_health"]["diversification"] == 0.0


# =============================================================================
# POSITIONS AND EVENTS
# =============================================================================

class TestPositionEndpoints:
    """Test position reads and the liquidity write hook."""

    def test_no_positions(self, client):
        assert client.get(f"/api/liquidity/positions/{USER}").json() == []

    def test_position_not_found(self, client):
        assert client.get(f"/api/liquidity/positions/{USER}/STX-USDCx").status_code == 404

    def test_liquidity_event_visible_on_next_read(self, client, source):
        """The write hook acknowledges only after the caches are invalidated."""
        assert client.get(f"/api/liquidity/positions/{USER}").json() == []
        source.set_lp_balance(USER, STX.address, USDCX.address, LP_BALANCE)

        response = client.post("/api/liquidity/events/liquidity", json=liquidity_event())

        assert response.status_code == 200
        assert response.json()["lp_token_balance"] == LP_BALANCE
        positions = client.get(f"/api/liquidity/positions/{USER}").json()
        assert len(positions) == 1
        assert positions[0]["current_value"] == pytest.approx(500_000)

    def test_position_details(self, client, source):
        source.set_lp_balance(USER, STX.address, USDCX.address, LP_BALANCE)
        client.post("/api/liquidity/events/liquidity", json=liquidity_event())

        position = client.get(f"/api/liquidity/positions/{USER}/STX-USDCx").json()
        value = client.get(f"/api/liquidity/positions/{USER}/STX-USDCx/value").json()
        loss = client.get(f"/api/liquidity/positions/{USER}/STX-USDCx/impermanent-loss").json()
        portfolio = client.get(f"/api/liquidity/positions/{USER}/portfolio").json()
        history = client.get(f"/api/liquidity/positions/{USER}/history").json()

        assert position["share_percentage"] == 10.0
        assert value["unrealized_pnl"] == pytest.approx(0.0)
        assert loss["current_loss"] == pytest.approx(0.0)
        assert portfolio["position_count"] == 1
        assert [h["action"] for h in history] == ["add"]

    def test_remove_event(self, client, source):
        client.post("/api/liquidity/events/liquidity", json=liquidity_event())

        response = client.post(
            "/api/liquidity/events/liquidity", json=liquidity_event(action="remove"),
        )

        assert response.json()["lp_token_balance"] == 0

    def test_event_for_unknown_pool(self, client):
        response = client.post("/api/liquidity/events/liquidity", json=liquidity_event(pool_id="USDCx-VEX"))
        assert response.status_code == 404

    @pytest.mark.parametrize("field, value", [
        ("user_address", "SP1 OR 1=1"),
        ("pool_id", "STX:USDCx"),
        ("lp_token_amount", 0),
        ("action", "burn"),
    ])
    def test_event_validation(self, client, field, value):
        response = client.post("/api/liquidity/events/liquidity", json=liquidity_event(**{field: value}))
        assert response.status_code == 422

    def test_swap_event(self, client):
        client.get("/api/liquidity/analytics/STX-USDCx")

        response = client.post("/api/liquidity/events/swap", json={"pool_id": "STX-USDCx"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["keys_invalidated"] > 0

    def test_returns(self, client):
        body = client.get(f"/api/liquidity/positions/{USER}/returns", params={"timeframe": "7d"}).json()
        assert body["annual"] == 0.0


# =============================================================================
# FEES
# =============================================================================

class TestFeeEndpoints:
    """Test fee reads, reports and the fee write hook."""

    def test_record_fee(self, client):
        response = client.post("/api/liquidity/events/fees", json={
            "user_address": USER, "pool_id": "STX-USDCx", "amount_usd": 12.5,
        })

        assert response.status_code == 200
        assert response.json()["amount_usd"] == 12.5
        history = client.get(f"/api/liquidity/fees/{USER}/history").json()
        assert [f["amount_usd"] for f in history] == [12.5]

    def test_negative_fee_rejected(self, client):
        response = client.post("/api/liquidity/events/fees", json={
            "user_address": USER, "pool_id": "STX-USDCx", "amount_usd": -1,
        })
        assert response.status_code == 422

    def test_fee_tracking_disabled(self, client, settings):
        settings.FEE_TRACKING_ENABLED = False
        response = client.post("/api/liquidity/events/fees", json={
            "user_address": USER, "pool_id": "STX-USDCx", "amount_usd": 1,
        })
        assert response.status_code == 404

    def test_fee_earnings(self, client):
        body = client.get(f"/api/liquidity/fees/{USER}/STX-USDCx").json()
        assert body["total_earnings"] == 0.0

    def test_tax_report(self, client):
        response = client.get(f"/api/liquidity/fees/{USER}/report/2025")
        assert response.status_code == 200
        assert response.json()["total_transactions"] == 0

    def test_tax_report_invalid_year(self, client):
        assert client.get(f"/api/liquidity/fees/{USER}/report/1999").status_code == 400

    def test_tax_reporting_disabled(self, client, settings):
        settings.TAX_REPORTING_ENABLED = False
        assert client.get(f"/api/liquidity/fees/{USER}/report/2025").status_code == 404

    def test_statistics(self, client):
        body = client.get("/api/liquidity/fees/statistics").json()
        assert body["total_fees_24h"] == pytest.approx(1_620)


# =============================================================================
# CACHE MANAGEMENT
# =============================================================================

class TestCacheEndpoints:
    """Test cache monitoring and manual operations."""

    def test_cache_health(self, client):
        body = client.get("/api/cache/health").json()
        assert body["status"] == "healthy"
        assert body["backend"] == "memory"
        assert body["enabled"] is True

    def test_cache_stats(self, client):
        client.get("/api/liquidity/pools")
        client.get("/api/liquidity/pools")

        body = client.get("/api/cache/stats").json()

        assert body["hits"] >= 1
        assert body["store"]["backend"] == "memory"

    def test_cache_summary(self, client):
        body = client.get("/api/cache/summary").json()
        assert body["health"]["status"] == "healthy"

    def test_invalidate_pool(self, client):
        client.get("/api/liquidity/analytics/STX-USDCx")
        body = client.post("/api/cache/invalidate/pool/STX-USDCx").json()
        assert body["success"] is True
        assert body["keys_invalidated"] > 0

    def test_invalidate_user(self, client):
        body = client.post(f"/api/cache/invalidate/user/{USER}").json()
        assert body["success"] is True

    def test_invalidate_all(self, client, store):
        client.get("/api/liquidity/pools")
        body = client.post("/api/cache/invalidate/all").json()

        assert body["keys_invalidated"] > 0
        assert len(store) == 0

    def test_warm(self, client):
        body = client.post("/api/cache/warm").json()
        assert body["pools"] == 2
        assert body["warmed"] == 2
