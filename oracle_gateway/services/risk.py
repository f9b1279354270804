# oracle_gateway/services/risk.py
"""
Protocol risk scoring from exploit history.

score = 0.4 * frequency + 0.3 * total loss + 0.3 * recency, where
- frequency: exploits in the last 30 days, 10+ scores 100
- total loss: cumulative USD loss, $10M+ scores 100
- recency: latest exploit under 7 days old scores 100, under 30 days 50
"""
import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

RECENT_WINDOW_DAYS = 30
FREQUENCY_CAP = 10
LOSS_CAP_USD = 10_000_000

RISK_LEVELS = [
    (75, "CRITICAL", "AVOID - High exploit risk detected"),
    (50, "HIGH", "CAUTION - Significant security concerns"),
    (25, "MEDIUM", "MONITOR - Some historical issues"),
    (0, "LOW", "ACCEPTABLE - Low risk profile"),
]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with or without 'Z'); None if unparseable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_loss(value: Any) -> float:
    """USD loss as a non-negative float; 0 when missing or unparseable."""
    if isinstance(value, bool):
        return 0.0
    try:
        loss = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(loss) or loss < 0:
        return 0.0
    return loss


def calculate_risk_score(
    exploits: List[Dict[str, Any]],
    protocol: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Score a protocol from its exploit records (newest first).

    Returns:
        Dict with protocol, score (0-100), risk_level, recent_exploits,
        total_loss_usd, recommendation and the individual factor scores.
    """
    now = now or datetime.now(timezone.utc)
    exploits = [e for e in exploits if isinstance(e, dict)]
    recent_cutoff = now - timedelta(days=RECENT_WINDOW_DAYS)

    timestamps = [parse_timestamp(e.get("timestamp")) for e in exploits]
    recent_count = sum(1 for ts in timestamps if ts is not None and ts > recent_cutoff)
    total_loss = sum(parse_loss(e.get("loss_usd")) for e in exploits)
    severity_distribution = dict(Counter(
        e["severity"] for e in exploits if isinstance(e.get("severity"), str) and e["severity"]
    ))

    frequency_score = min(recent_count / FREQUENCY_CAP * 100, 100)
    loss_score = min(total_loss / LOSS_CAP_USD * 100, 100)

    latest = timestamps[0] if timestamps else None
    if latest is None:
        recency_score = 0
    else:
        days_since_latest = (now - latest).total_seconds() / 86400
        if days_since_latest < 7:
            recency_score = 100
        elif days_since_latest < 30:
            recency_score = 50
        else:
            recency_score = 0

    score = frequency_score * 0.4 + loss_score * 0.3 + recency_score * 0.3

    for threshold, level, recommendation in RISK_LEVELS:
        if score >= threshold:
            break

    return {
        "protocol": protocol,
        "score": round(score),
        "risk_level": level,
        "recent_exploits": recent_count,
        "total_loss_usd": round(total_loss),
        "recommendation": recommendation,
        "factors": {
            "exploit_frequency": round(frequency_score),
            "total_loss": round(loss_score),
            "recency": round(recency_score),
            "severity_distribution": severity_distribution,
        },
    }
