# tests/test_risk.py
"""
Unit tests for protocol risk scoring.
"""
from datetime import datetime, timedelta, timezone

from oracle_gateway.services.risk import calculate_risk_score, parse_loss, parse_timestamp

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def exploit(days_ago, loss_usd=0, severity="high"):
    return {
        "timestamp": (NOW - timedelta(days=days_ago)).isoformat().replace("+00:00", "Z"),
        "loss_usd": loss_usd,
        "severity": severity,
    }


class TestParseTimestamp:
    def test_zulu_suffix(self):
        assert parse_timestamp("2026-03-01T00:00:00Z") == NOW

    def test_naive_assumed_utc(self):
        assert parse_timestamp("2026-03-01T00:00:00") == NOW

    def test_invalid(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestCalculateRiskScore:
    def test_no_history(self):
        result = calculate_risk_score([], "Safe", now=NOW)

        assert result["score"] == 0
        assert result["risk_level"] == "LOW"
        assert result["recent_exploits"] == 0
        assert result["total_loss_usd"] == 0
        assert result["recommendation"].startswith("ACCEPTABLE")

    def test_recent_heavy_losses_are_critical(self):
        exploits = [exploit(d, loss_usd=2_000_000, severity="critical") for d in range(1, 11)]

        result = calculate_risk_score(exploits, "Rekt", now=NOW)

        assert result["score"] == 100
        assert result["risk_level"] == "CRITICAL"
        assert result["factors"]["exploit_frequency"] == 100
        assert result["factors"]["total_loss"] == 100
        assert result["factors"]["recency"] == 100
        assert result["factors"]["severity_distribution"] == {"critical": 10}

    def test_recency_bands(self):
        assert calculate_risk_score([exploit(3)], "p", now=NOW)["factors"]["recency"] == 100
        assert calculate_risk_score([exploit(10)], "p", now=NOW)["factors"]["recency"] == 50
        assert calculate_risk_score([exploit(45)], "p", now=NOW)["factors"]["recency"] == 0

    def test_old_exploits_not_counted_as_recent(self):
        result = calculate_risk_score([exploit(40), exploit(90)], "p", now=NOW)
        assert result["recent_exploits"] == 0

    def test_weighted_score(self):
        # 5 recent exploits (50), $5M loss (50), latest 10 days ago (50)
        exploits = [exploit(d, loss_usd=1_000_000) for d in (10, 12, 14, 16, 18)]

        result = calculate_risk_score(exploits, "Mid", now=NOW)

        assert result["score"] == 50
        assert result["risk_level"] == "HIGH"
        assert result["total_loss_usd"] == 5_000_000

    def test_medium_band(self):
        # one recent exploit (10) with $1M loss (10), 3 days ago (100) => 4 + 3 + 30 = 37
        result = calculate_risk_score([exploit(3, loss_usd=1_000_000)], "p", now=NOW)

        assert result["score"] == 37
        assert result["risk_level"] == "MEDIUM"

    def test_missing_fields_tolerated(self):
        result = calculate_risk_score([{"protocol": "p"}, {"loss_usd": None}], "p", now=NOW)
        assert result["score"] == 0

    def test_unparseable_losses_count_as_zero(self):
        exploits = [
            {"loss_usd": "unknown"},
            {"loss_usd": "1000000"},
            {"loss_usd": [1, 2]},
            {"loss_usd": True},
            {"loss_usd": -50},
            {"loss_usd": float("nan")},
        ]

        result = calculate_risk_score(exploits, "p", now=NOW)

        assert result["total_loss_usd"] == 1_000_000

    def test_non_object_records_ignored(self):
        result = calculate_risk_score(["junk", None, exploit(3)], "p", now=NOW)

        assert result["recent_exploits"] == 1
        assert result["factors"]["recency"] == 100


class TestParseLoss:
    def test_values(self):
        assert parse_loss(2500) == 2500.0
        assert parse_loss("12.5") == 12.5
        assert parse_loss(None) == 0.0
        assert parse_loss("n/a") == 0.0
        assert parse_loss(float("inf")) == 0.0
