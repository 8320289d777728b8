"""OWASP Risk Rating calculator.

Implements the OWASP Risk Rating Methodology: eight likelihood factors and
four technical impact factors, each rated 0-9, are averaged into scores,
bucketed into LOW/MEDIUM/HIGH levels and combined through a fixed matrix
into a severity. This module is the only place severity is decided.

https://owasp.org/www-community/OWASP_Risk_Rating_Methodology
"""

import math
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

RiskLevel = Literal['LOW', 'MEDIUM', 'HIGH']
RiskSeverity = Literal['Note', 'Low', 'Medium', 'High', 'Critical']
Severity = Literal['Critical', 'High', 'Medium', 'Low']

NEUTRAL_FACTOR = 5
MIN_FACTOR = 0
MAX_FACTOR = 9

LIKELIHOOD_FACTORS = (
    # Threat agent factors
    'skillLevel', 'motive', 'opportunity', 'size',
    # Vulnerability factors
    'easeOfDiscovery', 'easeOfExploit', 'awareness', 'intrusionDetection',
)

IMPACT_FACTORS = ('confidentiality', 'integrity', 'availability', 'accountability')


class OwaspLikelihood(BaseModel):
    """Threat agent and vulnerability factors, each 0-9."""
    skillLevel: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    motive: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    opportunity: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    size: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    easeOfDiscovery: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    easeOfExploit: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    awareness: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    intrusionDetection: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)


class OwaspImpact(BaseModel):
    """Technical impact factors, each 0-9."""
    confidentiality: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    integrity: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    availability: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)
    accountability: int = Field(default=NEUTRAL_FACTOR, ge=MIN_FACTOR, le=MAX_FACTOR)


class RiskRating(BaseModel):
    """Derived OWASP rating for one threat."""
    likelihood: OwaspLikelihood
    impact: OwaspImpact
    likelihoodScore: float
    impactScore: float
    likelihoodLevel: RiskLevel
    impactLevel: RiskLevel
    riskSeverity: RiskSeverity
    overallRiskScore: float

    @property
    def severity(self) -> Severity:
        """Severity as surfaced to callers (Note is reported as Low)."""
        return display_severity(self.riskSeverity)


# Indexed as RISK_MATRIX[impact_level][likelihood_level]
RISK_MATRIX: dict[str, dict[str, str]] = {
    'HIGH': {'LOW': 'Medium', 'MEDIUM': 'High', 'HIGH': 'Critical'},
    'MEDIUM': {'LOW': 'Low', 'MEDIUM': 'Medium', 'HIGH': 'High'},
    'LOW': {'LOW': 'Note', 'MEDIUM': 'Low', 'HIGH': 'Medium'},
}


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def clamp_factor(value: Any) -> int:
    """Round a raw factor and clamp it to 0-9. Missing or invalid values become 5."""
    if value is None or isinstance(value, bool):
        return NEUTRAL_FACTOR
    try:
        number = float(value)
    except (TypeError, ValueError):
        return NEUTRAL_FACTOR
    if not math.isfinite(number):
        return NEUTRAL_FACTOR
    return int(max(MIN_FACTOR, min(MAX_FACTOR, _round_half_up(number))))


def _raw_factors(raw: Any) -> dict:
    if raw is None:
        return {}
    if isinstance(raw, BaseModel):
        return raw.model_dump()
    if isinstance(raw, dict):
        return raw
    return {}


def validate_likelihood(raw: Any) -> OwaspLikelihood:
    """Build clamped likelihood factors from a dict, a model or None."""
    data = _raw_factors(raw)
    return OwaspLikelihood(**{name: clamp_factor(data.get(name)) for name in LIKELIHOOD_FACTORS})


def validate_impact(raw: Any) -> OwaspImpact:
    """Build clamped impact factors from a dict, a model or None."""
    data = _raw_factors(raw)
    return OwaspImpact(**{name: clamp_factor(data.get(name)) for name in IMPACT_FACTORS})


def get_level(score: float) -> RiskLevel:
    if score < 3:
        return 'LOW'
    if score < 6:
        return 'MEDIUM'
    return 'HIGH'


def get_risk_severity(impact_level: RiskLevel, likelihood_level: RiskLevel) -> RiskSeverity:
    return RISK_MATRIX[impact_level][likelihood_level]


def display_severity(risk_severity: str) -> Severity:
    return 'Low' if risk_severity == 'Note' else risk_severity


def calculate_risk_rating(
    raw_likelihood: Optional[Any] = None,
    raw_impact: Optional[Any] = None,
) -> RiskRating:
    """Calculate the full OWASP rating from raw likelihood and impact factors."""
    likelihood = validate_likelihood(raw_likelihood)
    impact = validate_impact(raw_impact)

    likelihood_values = [getattr(likelihood, name) for name in LIKELIHOOD_FACTORS]
    impact_values = [getattr(impact, name) for name in IMPACT_FACTORS]
    likelihood_score = sum(likelihood_values) / len(likelihood_values)
    impact_score = sum(impact_values) / len(impact_values)

    likelihood_level = get_level(likelihood_score)
    impact_level = get_level(impact_score)

    return RiskRating(
        likelihood=likelihood,
        impact=impact,
        likelihoodScore=_round_half_up(likelihood_score, 2),
        impactScore=_round_half_up(impact_score, 2),
        likelihoodLevel=likelihood_level,
        impactLevel=impact_level,
        riskSeverity=get_risk_severity(impact_level, likelihood_level),
        overallRiskScore=_round_half_up(likelihood_score * impact_score, 2),
    )


def get_severity_color(severity: str) -> str:
    """Get hex color for a severity rating."""
    colors = {
        "Note": "#53aa33",
        "Low": "#ffcb0d",
        "Medium": "#f9a009",
        "High": "#df3d03",
        "Critical": "#cc0500",
    }
    return colors.get(severity, "#808080")


SEVERITY_RANK = {'Critical': 0, 'High': 1, 'Medium': 2, 'Low': 3, 'Note': 4}
