"""Risk scoring engine - fraud gate for travel document purchases"""

import ipaddress
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple

from proofport_gateway.domain.models import DeviceSignal, RiskAssessment, RiskLevel, RiskSignals
from proofport_gateway.utils.date_utils import parse_date

# Signal weights, applied additively
NO_DEVICE_WEIGHT = 0.30
LOW_DEVICE_CONFIDENCE_WEIGHT = 0.20
DISPOSABLE_EMAIL_WEIGHT = 0.40
SUSPICIOUS_EMAIL_WEIGHT = 0.30
HIGH_AMOUNT_WEIGHT = 0.20
LOW_AMOUNT_WEIGHT = 0.10
SAME_DAY_TRAVEL_WEIGHT = 0.30
FAR_FUTURE_TRAVEL_WEIGHT = 0.30
HIGH_RISK_COUNTRY_WEIGHT = 0.20
SUSPICIOUS_NETWORK_WEIGHT = 0.30

LOW_CONFIDENCE_THRESHOLD = 0.5
HIGH_AMOUNT = 500
LOW_AMOUNT = 10
FAR_FUTURE_DAYS = 365

HIGH_RISK_THRESHOLD = 0.8
MEDIUM_RISK_THRESHOLD = 0.5

SUSPICIOUS_LOCAL_PART_PATTERNS = (
    re.compile(r"\d{6,}"),  # long digit run
    re.compile(r"[a-z]{20,}"),  # long letter run
    re.compile(r"(.)\1{4,}"),  # 5+ repeated characters
)


@dataclass(frozen=True)
class RiskPolicy:
    """Denylist tables consulted by the scoring checks"""

    disposable_domains: FrozenSet[str]
    high_risk_countries: FrozenSet[str]
    suspicious_networks: Tuple[Any, ...]

    @classmethod
    def build(cls, disposable_domains, high_risk_countries, suspicious_networks) -> "RiskPolicy":
        return cls(
            disposable_domains=frozenset(d.lower() for d in disposable_domains),
            high_risk_countries=frozenset(c.upper() for c in high_risk_countries),
            suspicious_networks=tuple(ipaddress.ip_network(n, strict=False) for n in suspicious_networks),
        )

    @classmethod
    def from_settings(cls, config=None) -> "RiskPolicy":
        if config is None:
            from proofport_gateway.config import settings as config
        return cls.build(
            config.risk_disposable_domains,
            config.risk_high_risk_countries,
            config.risk_suspicious_networks,
        )


def _split_email(email: Any) -> Tuple[str, str]:
    if not isinstance(email, str) or "@" not in email:
        return "", ""
    local, _, domain = email.rpartition("@")
    return local, domain.lower()


def is_disposable_email(email: Any, policy: RiskPolicy) -> bool:
    _, domain = _split_email(email)
    return bool(domain) and domain in policy.disposable_domains


def is_suspicious_email(email: Any) -> bool:
    local, _ = _split_email(email)
    local = local.lower()
    return any(pattern.search(local) for pattern in SUSPICIOUS_LOCAL_PART_PATTERNS)


def travel_date_from(trip_metadata: Any):
    """Departure date from trip metadata; the storefront sent it as `departure_date` or `dates`"""
    if not isinstance(trip_metadata, Mapping):
        return None
    return parse_date(trip_metadata.get("departure_date") or trip_metadata.get("dates"))


def is_high_risk_country(country: Any, policy: RiskPolicy) -> bool:
    if not isinstance(country, str) or not country.strip():
        return False
    return country.strip().upper() in policy.high_risk_countries


def is_suspicious_ip(ip: Any, policy: RiskPolicy) -> bool:
    if not isinstance(ip, str):
        return False
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    return any(address.version == net.version and address in net for net in policy.suspicious_networks)


def _device_confidence(device: Optional[DeviceSignal]) -> Optional[float]:
    """Confidence of a usable device signal, or None when the signal is absent or malformed"""
    if device is None:
        return None
    confidence = getattr(device, "confidence", None)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None
    return float(confidence)


def _amount(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def determine_risk_level(score: float) -> Tuple[RiskLevel, bool]:
    """
    Map a score to its risk level and block decision.

    - score >= 0.8: high, blocked
    - 0.5 <= score < 0.8: medium
    - below 0.5: low
    """
    if score >= HIGH_RISK_THRESHOLD:
        return RiskLevel.HIGH, True
    elif score >= MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM, False
    else:
        return RiskLevel.LOW, False


def collect_signals(signals: RiskSignals, now: datetime, policy: RiskPolicy) -> List[Tuple[str, float]]:
    """Every (reason, weight) pair whose condition holds, in table order"""
    fired: List[Tuple[str, float]] = []

    # Device trust
    confidence = _device_confidence(signals.device)
    if confidence is None:
        fired.append(("No device fingerprint available", NO_DEVICE_WEIGHT))
    elif confidence < LOW_CONFIDENCE_THRESHOLD:
        fired.append(("Low device fingerprint confidence", LOW_DEVICE_CONFIDENCE_WEIGHT))

    # Email
    if is_disposable_email(signals.email, policy):
        fired.append(("Disposable email detected", DISPOSABLE_EMAIL_WEIGHT))
    if is_suspicious_email(signals.email):
        fired.append(("Suspicious email pattern", SUSPICIOUS_EMAIL_WEIGHT))

    # Amount
    amount = _amount(signals.amount)
    if amount is not None and amount > HIGH_AMOUNT:
        fired.append(("High transaction amount", HIGH_AMOUNT_WEIGHT))
    if amount is not None and amount < LOW_AMOUNT:
        fired.append(("Unusually low amount", LOW_AMOUNT_WEIGHT))

    # Trip pattern
    travel_date = travel_date_from(signals.trip_metadata)
    if travel_date is not None:
        days_ahead = (travel_date - now.date()).days
        if days_ahead == 0:
            fired.append(("Same-day travel", SAME_DAY_TRAVEL_WEIGHT))
        elif days_ahead > FAR_FUTURE_DAYS:
            fired.append(("Far-future travel", FAR_FUTURE_TRAVEL_WEIGHT))

    if is_high_risk_country(signals.country, policy):
        fired.append(("High-risk country", HIGH_RISK_COUNTRY_WEIGHT))

    if is_suspicious_ip(signals.ip, policy):
        fired.append(("Suspicious IP address", SUSPICIOUS_NETWORK_WEIGHT))

    return fired


def evaluate_risk(signals: RiskSignals, now: datetime, policy: Optional[RiskPolicy] = None) -> RiskAssessment:
    """
    Score a prospective purchase and decide whether it may proceed.

    Contributions of every firing signal are summed, rounded to 3 places
    and clamped to 1.0. Never raises: missing or malformed optional
    inputs count as an absent signal.
    """
    if policy is None:
        policy = RiskPolicy.from_settings()

    fired = collect_signals(signals, now, policy)
    score = min(round(sum(weight for _, weight in fired), 3), 1.0)
    level, block = determine_risk_level(score)

    device_id = getattr(signals.device, "visitor_id", None) or "unknown"

    return RiskAssessment(
        score=score,
        level=level,
        reasons=[reason for reason, _ in fired],
        block=block,
        device_id=str(device_id),
    )
