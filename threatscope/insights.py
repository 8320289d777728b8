"""Quality metrics and recommendations for a finished threat model."""

from pydantic import BaseModel, Field

from .schemas import STRIDE_CATEGORIES, ThreatRecord

STRIDE_ABBREVIATIONS = {
    'Spoofing': 'S',
    'Tampering': 'T',
    'Repudiation': 'R',
    'Information Disclosure': 'I',
    'Denial of Service': 'D',
    'Elevation of Privilege': 'E',
}

SEVERITY_WEIGHTS = {'Critical': 10, 'High': 7, 'Medium': 4, 'Low': 1}


class StrideCoverage(BaseModel):
    covered: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    total: int = len(STRIDE_CATEGORIES)
    percentage: int = 0


class SeverityDistribution(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class MitigationRate(BaseModel):
    threatsWithMitigation: int = 0
    totalThreats: int = 0
    percentage: int = 0


class StatusDistribution(BaseModel):
    identified: int = 0
    inProgress: int = 0
    mitigated: int = 0
    accepted: int = 0


class StrideCount(BaseModel):
    category: str
    count: int
    abbreviation: str


class InsightMetrics(BaseModel):
    """Summary metrics; riskScore is 0-100, lower is better."""
    strideCoverage: StrideCoverage
    severityDistribution: SeverityDistribution
    mitigationRate: MitigationRate
    statusDistribution: StatusDistribution
    strideBreakdown: list[StrideCount]
    riskScore: int
    recommendations: list[str] = Field(default_factory=list)


def _percent(part: int, whole: int) -> int:
    if not whole:
        return 0
    # round half up
    return int(part * 100 / whole + 0.5)


def compute_risk_score(
    threats: list[ThreatRecord],
    severity: SeverityDistribution,
    mitigation: MitigationRate,
    status: StatusDistribution,
) -> int:
    """Weighted severity scaled by the unmitigated and untriaged shares."""
    if not threats:
        return 0
    severity_score = (
        severity.critical * SEVERITY_WEIGHTS['Critical']
        + severity.high * SEVERITY_WEIGHTS['High']
        + severity.medium * SEVERITY_WEIGHTS['Medium']
        + severity.low * SEVERITY_WEIGHTS['Low']
    ) / len(threats)
    unmitigated_ratio = 1 - mitigation.percentage / 100
    identified_ratio = status.identified / len(threats)
    raw = severity_score * 10 * (0.5 + unmitigated_ratio * 0.5) * (0.5 + identified_ratio * 0.5)
    return min(100, int(raw + 0.5))


def generate_recommendations(
    threats: list[ThreatRecord],
    coverage: StrideCoverage,
    severity: SeverityDistribution,
    mitigation: MitigationRate,
    status: StatusDistribution,
) -> list[str]:
    recs = []
    if coverage.missing:
        recs.append(
            f"Consider threats in uncovered STRIDE categories: {', '.join(coverage.missing)}. "
            f"Your model covers {coverage.percentage}% of categories."
        )

    unmitigated_critical = sum(1 for t in threats if t.severity == 'Critical' and t.status != 'Mitigated')
    if unmitigated_critical:
        recs.append(f"{unmitigated_critical} critical threat(s) remain unmitigated. Prioritize these immediately.")

    if mitigation.percentage < 50:
        recs.append(
            f"Mitigation rate is {mitigation.percentage}%. "
            "Aim for at least 80% of threats to have defined mitigations."
        )

    if status.identified > len(threats) * 0.5 and len(threats) > 3:
        recs.append(
            f'{status.identified} of {len(threats)} threats are still in "Identified" status. '
            "Begin triaging and assigning mitigations."
        )

    if coverage.percentage == 100 and mitigation.percentage >= 80 and severity.critical == 0:
        recs.append("Threat model quality is high. Consider scheduling a review to validate mitigations are effective.")
    return recs


def compute_insights(threats: list[ThreatRecord]) -> InsightMetrics:
    categories = {t.strideCategory for t in threats}
    covered = [c for c in STRIDE_CATEGORIES if c in categories]
    coverage = StrideCoverage(
        covered=covered,
        missing=[c for c in STRIDE_CATEGORIES if c not in categories],
        percentage=_percent(len(covered), len(STRIDE_CATEGORIES)),
    )

    severity = SeverityDistribution(
        critical=sum(1 for t in threats if t.severity == 'Critical'),
        high=sum(1 for t in threats if t.severity == 'High'),
        medium=sum(1 for t in threats if t.severity == 'Medium'),
        low=sum(1 for t in threats if t.severity == 'Low'),
    )

    with_mitigation = sum(1 for t in threats if t.mitigations)
    mitigation = MitigationRate(
        threatsWithMitigation=with_mitigation,
        totalThreats=len(threats),
        percentage=_percent(with_mitigation, len(threats)),
    )

    status = StatusDistribution(
        identified=sum(1 for t in threats if t.status == 'Identified'),
        inProgress=sum(1 for t in threats if t.status == 'In Progress'),
        mitigated=sum(1 for t in threats if t.status == 'Mitigated'),
        accepted=sum(1 for t in threats if t.status == 'Accepted'),
    )

    breakdown = [
        StrideCount(
            category=category,
            count=sum(1 for t in threats if t.strideCategory == category),
            abbreviation=STRIDE_ABBREVIATIONS[category],
        )
        for category in STRIDE_CATEGORIES
    ]

    return InsightMetrics(
        strideCoverage=coverage,
        severityDistribution=severity,
        mitigationRate=mitigation,
        statusDistribution=status,
        strideBreakdown=breakdown,
        riskScore=compute_risk_score(threats, severity, mitigation, status),
        recommendations=generate_recommendations(threats, coverage, severity, mitigation, status),
    )
