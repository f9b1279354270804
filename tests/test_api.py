# tests/test_api.py
"""
Integration tests for the assembled application: paid data endpoints,
validation, health and response hardening.

Upstream data sources are mocked at ``requests.get``; the ledger is replaced
by a verifier double from conftest.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi.testclient import TestClient

from oracle_gateway.api.ratelimit import RateLimiter
from oracle_gateway.main import create_app
from oracle_gateway.services.fetcher import FailoverFetcher
from oracle_gateway.services.response_cache import ResponseCache
from oracle_gateway.services.sources import DataSource, SourceRegistry
from conftest import FakeClock, PRICE, WALLET, encode_payment

EXPLOITS = [
    {
        "tx_hash": f"0x{i:064x}",
        "protocol": "Uniswap",
        "chain": "ethereum",
        "loss_usd": 250_000,
        "timestamp": "2026-01-15T12:00:00Z",
        "severity": "high",
        "source": "kamiyo",
    }
    for i in range(5)
]


def upstream(payload):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


@pytest.fixture
def fetcher():
    clock = FakeClock()
    registry = SourceRegistry(
        [
            DataSource(name="primary", endpoint="https://primary.test", priority=1),
            DataSource(name="backup", endpoint="https://backup.test", priority=2),
        ],
        breaker_threshold=5,
        breaker_timeout=60,
        clock=clock,
    )
    return FailoverFetcher(registry, ResponseCache(300, clock=clock), request_timeout=5, deadline=10)


@pytest.fixture
def app(gate, fetcher):
    return create_app(gate=gate, fetcher=fetcher, limiter=RateLimiter(max_requests=1000, window_seconds=60))


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def paid():
    return {"X-PAYMENT": encode_payment()}


class TestRoot:
    def test_service_info_is_free(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["x402"]["version"] == 1
        assert set(body["paid_resources"]) == {"/exploits", "/risk-score"}
        assert any(e["path"] == "/health" for e in body["endpoints"])


class TestExploits:
    def test_requires_payment(self, client):
        response = client.get("/exploits")

        assert response.status_code == 402
        accept = response.json()["accepts"][0]
        assert accept["payTo"] == WALLET
        assert accept["maxAmountRequired"] == str(PRICE)

    @patch("oracle_gateway.services.fetcher.requests.get")
    def test_paid_request(self, mock_get, client, paid):
        mock_get.return_value = upstream({"exploits": EXPLOITS})

        response = client.get("/exploits?protocol=Uniswap&chain=ethereum", headers=paid)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["count"] == 5
        assert body["exploits"][0]["protocol"] == "Uniswap"
        assert "X-PAYMENT-RESPONSE" in response.headers
        params = mock_get.call_args.kwargs["params"]
        assert params["protocol"] == "Uniswap"
        assert params["chain"] == "ethereum"

    @patch("oracle_gateway.services.fetcher.requests.get")
    def test_limit_applied(self, mock_get, client, paid):
        mock_get.return_value = upstream({"exploits": EXPLOITS})

        response = client.get("/exploits?limit=2", headers=paid)

        assert response.json()["count"] == 2

    @patch("oracle_gateway.services.fetcher.requests.get")
    def test_upstream_failover(self, mock_get, client, paid, fetcher):
        def _get(url, **kwargs):
            if url.startswith("https://primary.test"):
                raise requests.exceptions.ConnectionError("refused")
            return upstream({"exploits": EXPLOITS[:1]})

        mock_get.side_effect = _get

        response = client.get("/exploits", headers=paid)

        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert fetcher.registry.get("primary").consecutive_failures == 1

    @patch("oracle_gateway.services.fetcher.requests.get")
    def test_all_sources_down(self, mock_get, client, paid):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")

        response = client.get("/exploits", headers=paid)

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"] == "Service Unavailable"
        assert "refused" in detail["last_error"]

    @pytest.mark.parametrize(
        "query",
        ["limit=0", "limit=500", "chain=notachain", "protocol=bad;name", "limit=abc"],
    )
    def test_validation_errors(self, client, paid, query):
        response = client.get(f"/exploits?{query}", headers=paid)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation Error"
        assert body["details"][0]["field"] in {"limit", "chain", "protocol"}

    def test_unpaid_invalid_request_still_challenged(self, client):
        """Payment is checked before parameters are validated."""
        assert client.get("/exploits?limit=500").status_code == 402


class TestRiskScore:
    @patch("oracle_gateway.services.fetcher.requests.get")
    def test_paid_risk_score(self, mock_get, client, paid):
        mock_get.return_value = upstream({"exploits": EXPLOITS})

        response = client.get("/risk-score/Uniswap", headers=paid)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data_points"] == 5
        assert body["risk_score"]["protocol"] == "Uniswap"
        assert body["risk_score"]["risk_level"] in {"LOW", "MEDIUM", "HIGH", "CRITICAL"}

    @patch("oracle_gateway.services.fetcher.requests.get")
    def test_malformed_upstream_records(self, mock_get, client, paid):
        """Unusable upstream records mean 503, not a server error."""
        mock_get.return_value = upstream({"exploits": [{"protocol": "Uniswap", "loss_usd": "unknown"}, "junk"]})

        risk = client.get("/risk-score/Uniswap", headers=paid)
        exploits = client.get("/exploits", headers=paid)

        assert risk.status_code == 503
        assert exploits.status_code == 503

    def test_requires_payment(self, client):
        response = client.get("/risk-score/Uniswap")

        assert response.status_code == 402
        assert response.json()["accepts"][0]["resource"] == "/risk-score/Uniswap"

    @patch("oracle_gateway.services.fetcher.requests.get")
    def test_one_payment_covers_both_endpoints(self, mock_get, client, paid, verifier):
        mock_get.return_value = upstream({"exploits": EXPLOITS})

        client.get("/exploits", headers=paid)
        client.get("/risk-score/Uniswap", headers=paid)

        assert verifier.verify.call_count == 1


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert [s["name"] for s in body["data_sources"]] == ["primary", "backup"]
        assert set(body["cache"]) == {"responses", "proofs"}
        assert body["cache"]["responses"]["ttl"] == 300
        assert body["uptime"] >= 0

    def test_degraded_when_every_breaker_open(self, client, fetcher):
        for name in ("primary", "backup"):
            for _ in range(5):
                fetcher.registry.record_failure(name)

        assert client.get("/health").json()["status"] == "degraded"

    def test_reports_cached_proofs(self, client, gate, paid):
        gate.admit(paid["X-PAYMENT"])
        assert client.get("/health").json()["cache"]["proofs"]["size"] == 1


class TestHardening:
    def test_security_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" not in response.headers

    def test_request_id_generated(self, client):
        request_id = client.get("/health").headers["X-Request-ID"]
        assert request_id.startswith("req_")

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"

    def test_headers_on_402(self, client):
        response = client.get("/exploits")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Request-ID" in response.headers

    def test_rate_limit(self, gate, fetcher):
        app = create_app(gate=gate, fetcher=fetcher, limiter=RateLimiter(max_requests=2, window_seconds=60))
        client = TestClient(app)

        client.get("/")
        client.get("/")
        response = client.get("/")

        assert response.status_code == 429
        assert "Retry-After" in response.headers


class TestLifespan:
    def test_sweepers_run_for_app_lifetime(self, app, gate, fetcher):
        with TestClient(app) as client:
            client.get("/health")
            assert gate.proof_cache.sweeper_running is True
            assert fetcher.cache.sweeper_running is True

        assert gate.proof_cache.sweeper_running is False
        assert fetcher.cache.sweeper_running is False
