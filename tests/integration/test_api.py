from datetime import date, datetime, timezone
from decimal import Decimal

from advisor.domain.models import ExchangeRate
from advisor.infrastructure.events.audit_sink import AuditEventType

USER = {"X-User-Id": "user-1"}


class TestHealthRoutes:
    async def test_health(self, client):
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_providers_healthy(self, client):
        response = await client.get("/api/v1/health/providers")
        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert [p["provider"] for p in body["providers"]] == [
            "fundamentals_fake", "prices_fake", "rates_fake",
        ]
        assert {p["state"] for p in body["providers"]} == {"closed"}

    async def test_providers_degraded(self, client, container):
        container.market_data.breakers.get("prices_fake").record_failure()

        body = (await client.get("/api/v1/health/providers")).json()
        assert body["status"] == "degraded"
        states = {p["provider"]: p["state"] for p in body["providers"]}
        assert states["prices_fake"] == "open"
        assert states["rates_fake"] == "closed"

    async def test_providers_unavailable(self, client, container):
        for name in ("prices_fake", "rates_fake", "fundamentals_fake"):
            container.market_data.breakers.get(name).record_failure()
        body = (await client.get("/api/v1/health/providers")).json()
        assert body["status"] == "unavailable"


class TestRecommendationRoutes:
    async def test_generate(self, client):
        response = await client.post(
            "/api/v1/recommendations/generate",
            headers=USER,
            json={"portfolio_id": "pf-1", "contribution": "800", "dividends": "200", "base_currency": "usd"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["base_currency"] == "USD"
        assert [(i["asset_id"], Decimal(i["recommended_amount"])) for i in body["items"]] == [
            ("a", Decimal("761.90")),
            ("b", Decimal("238.10")),
        ]
        assert Decimal(body["total_recommended"]) == Decimal("1000.00")
        assert body["is_balanced"] is False
        assert body["audit_trail"]["exchange_rates_snapshot"] == []

    async def test_missing_user_header(self, client):
        response = await client.post(
            "/api/v1/recommendations/generate",
            json={"portfolio_id": "pf-1", "contribution": "100"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_invalid_contribution(self, client):
        response = await client.post(
            "/api/v1/recommendations/generate",
            headers=USER,
            json={"portfolio_id": "pf-1", "contribution": "0"},
        )
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"] == {"field": "contribution"}

    async def test_malformed_body(self, client):
        response = await client.post(
            "/api/v1/recommendations/generate", headers=USER, json={"contribution": "100"}
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid request"
        assert body["details"]["errors"][0]["field"] == "body.portfolio_id"

    async def test_unknown_portfolio(self, client):
        response = await client.post(
            "/api/v1/recommendations/generate",
            headers=USER,
            json={"portfolio_id": "nope", "contribution": "100"},
        )
        assert response.status_code == 404
        assert response.json() == {
            "error": "Portfolio nope not found",
            "code": "NOT_FOUND",
            "details": {"portfolio_id": "nope"},
        }

    async def test_latest_recommendation(self, client):
        missing = await client.get("/api/v1/recommendations", headers=USER)
        assert missing.status_code == 404
        assert missing.json()["code"] == "NOT_FOUND"

        generated = (await client.post(
            "/api/v1/recommendations/generate",
            headers=USER,
            json={"portfolio_id": "pf-1", "contribution": "1000"},
        )).json()

        response = await client.get("/api/v1/recommendations", headers=USER)
        assert response.status_code == 200
        body = response.json()
        assert body["from_cache"] is True
        assert body["recommendation"]["id"] == generated["id"]
        assert body["portfolio_summary"]["asset_count"] == 2
        assert set(body["portfolio_summary"]["allocation_by_class"]) == {"stocks"}

    async def test_audit_trail_recorded(self, client, container, audit_handler):
        await client.post(
            "/api/v1/recommendations/generate",
            headers=USER,
            json={"portfolio_id": "pf-1", "contribution": "1000"},
        )
        await container.audit_sink.drain()
        completed = audit_handler.of_type(AuditEventType.CALC_COMPLETED)
        assert len(completed) == 1
        assert completed[0].payload["status"] == "succeeded"


class TestMarketDataRoutes:
    async def test_refresh_then_convert(self, client, audit_handler, container):
        refreshed = await client.post(
            "/api/v1/data/rates/refresh", json={"base": "USD", "targets": ["BRL", "EUR"]}
        )
        assert refreshed.status_code == 200
        stored = refreshed.json()
        assert [(r["base"], r["target"]) for r in stored] == [("USD", "BRL"), ("USD", "EUR")]
        assert {r["source"] for r in stored} == {"rates_fake"}

        converted = await client.post(
            "/api/v1/data/convert",
            json={"value": "100", "from_currency": "BRL", "to_currency": "USD"},
        )
        assert converted.status_code == 200
        body = converted.json()
        assert body["value"] == "20.0000"
        assert body["inverted"] is True
        assert body["source"] == "rates_fake"

        await container.audit_sink.drain()
        assert len(audit_handler.of_type(AuditEventType.RATES_REFRESHED)) == 1
        assert len(audit_handler.of_type(AuditEventType.CURRENCY_CONVERTED)) == 1

    async def test_convert_uses_stored_rate(self, client, container):
        await container.rate_refresh.store.add_rates([
            ExchangeRate(base="EUR", target="GBP", rate=Decimal("0.85"), rate_date=date.today(),
                         fetched_at=datetime.now(timezone.utc), source="open_exchange_rates"),
        ])
        response = await client.post(
            "/api/v1/data/convert",
            json={"value": "200", "from_currency": "EUR", "to_currency": "GBP"},
        )
        assert response.status_code == 200
        assert response.json()["value"] == "170.0000"
        assert response.json()["inverted"] is False

    async def test_convert_rate_not_found(self, client):
        response = await client.post(
            "/api/v1/data/convert",
            json={"value": "1", "from_currency": "EUR", "to_currency": "JPY"},
        )
        assert response.status_code == 404
        assert response.json()["code"] == "RATE_NOT_FOUND"

    async def test_convert_unsupported_currency(self, client):
        response = await client.post(
            "/api/v1/data/convert",
            json={"value": "1", "from_currency": "USD", "to_currency": "XAU"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_convert_same_currency(self, client):
        response = await client.post(
            "/api/v1/data/convert",
            json={"value": "12.5", "from_currency": "USD", "to_currency": "USD"},
        )
        assert response.json()["value"] == "12.5000"
        assert response.json()["source"] == "same-currency"
