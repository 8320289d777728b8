"""Pydantic models for analysis results and threat records."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .risk_engine import (
    OwaspImpact,
    OwaspLikelihood,
    RiskRating,
    Severity,
    calculate_risk_rating,
    validate_impact,
    validate_likelihood,
)

ComponentType = Literal['api', 'service', 'database', 'queue', 'gateway', 'external', 'frontend', 'config']

StrideCategory = Literal[
    'Spoofing',
    'Tampering',
    'Repudiation',
    'Information Disclosure',
    'Denial of Service',
    'Elevation of Privilege',
]

STRIDE_CATEGORIES: tuple[str, ...] = (
    'Spoofing',
    'Tampering',
    'Repudiation',
    'Information Disclosure',
    'Denial of Service',
    'Elevation of Privilege',
)

ThreatStatus = Literal['Identified', 'In Progress', 'Mitigated', 'Accepted']

Framework = Literal['STRIDE', 'OWASP Top 10', 'AWS Threat Grammar']

FRAMEWORKS: tuple[str, ...] = ('STRIDE', 'OWASP Top 10', 'AWS Threat Grammar')

SEVERITIES: tuple[str, ...] = ('Critical', 'High', 'Medium', 'Low')

ImplementationPhase = Literal['pre-code', 'during-code']

MAX_SNIPPET_LENGTH = 200
FILE_TREE_LIMIT = 200


class Component(BaseModel):
    """An architectural component inferred from the file set."""
    name: str
    type: ComponentType
    files: list[str] = Field(default_factory=list)
    description: str = ''


class DataFlow(BaseModel):
    """A directed data flow between two components, by name."""
    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., alias='from')
    target: str = Field(..., alias='to')
    protocol: str = ''
    dataType: str = ''


class TrustBoundary(BaseModel):
    """A trust boundary grouping component names."""
    name: str
    components: list[str] = Field(default_factory=list)


class Finding(BaseModel):
    """A single security pattern match in a source file."""
    file: str
    line: int = Field(..., ge=1)
    pattern: str
    snippet: str = ''
    severity: Severity

    @field_validator('snippet')
    @classmethod
    def truncate_snippet(cls, v: str) -> str:
        return v[:MAX_SNIPPET_LENGTH]


class AnalysisResult(BaseModel):
    """Everything the static stages learned about a codebase."""
    source: str = ''
    languages: list[str] = Field(default_factory=list)
    frameworks: list[str] = Field(default_factory=list)
    components: list[Component] = Field(default_factory=list)
    dataFlows: list[DataFlow] = Field(default_factory=list)
    trustBoundaries: list[TrustBoundary] = Field(default_factory=list)
    securityFindings: list[Finding] = Field(default_factory=list)
    fileTree: list[str] = Field(default_factory=list)
    entryPoints: list[str] = Field(default_factory=list)

    @field_validator('fileTree')
    @classmethod
    def cap_file_tree(cls, v: list[str]) -> list[str]:
        return v[:FILE_TREE_LIMIT]

    def component(self, name: str) -> Optional[Component]:
        for comp in self.components:
            if comp.name == name:
                return comp
        return None

    def valid_data_flows(self) -> list[DataFlow]:
        """Data flows whose endpoints both resolve to known components."""
        names = {c.name for c in self.components}
        return [f for f in self.dataFlows if f.source in names and f.target in names]


class Mitigation(BaseModel):
    """A mitigation, either prose or a code-level fix."""
    description: str
    codeFile: Optional[str] = None
    codeLine: Optional[int] = None
    codeOriginal: Optional[str] = None
    codeFixed: Optional[str] = None


class ThreatRecord(BaseModel):
    """A grammar-structured threat statement with its OWASP rating.

    Severity is never stored: it is derived from the likelihood and impact
    factors every time it is read or serialized.
    """
    id: str = ''
    title: str
    strideCategory: StrideCategory
    threatSource: str
    prerequisites: str
    threatAction: str
    threatImpact: str
    impactedAssets: list[str] = Field(default_factory=list)
    trustBoundary: str
    assumptions: list[str] = Field(default_factory=list)
    mitigations: list[Mitigation] = Field(default_factory=list)
    relatedCve: Optional[str] = None
    owaspLikelihood: OwaspLikelihood = Field(default_factory=OwaspLikelihood)
    owaspImpact: OwaspImpact = Field(default_factory=OwaspImpact)
    status: ThreatStatus = 'Identified'

    @field_validator('owaspLikelihood', mode='before')
    @classmethod
    def clamp_likelihood(cls, v):
        return validate_likelihood(v)

    @field_validator('owaspImpact', mode='before')
    @classmethod
    def clamp_impact(cls, v):
        return validate_impact(v)

    @computed_field
    @property
    def riskRating(self) -> RiskRating:
        return calculate_risk_rating(self.owaspLikelihood, self.owaspImpact)

    @computed_field
    @property
    def severity(self) -> Severity:
        return self.riskRating.severity

    def statement(self) -> str:
        """Render the full threat grammar sentence."""
        assets = ', '.join(self.impactedAssets) if self.impactedAssets else 'the application'
        source = self.threatSource.strip().rstrip('.')
        source = source[:1].upper() + source[1:]
        return (
            f"{source} with {_strip_prefix(self.prerequisites, 'with ')} "
            f"can {_strip_prefix(self.threatAction, 'can ')}, "
            f"which leads to {_strip_prefix(self.threatImpact, 'which leads to ')}, "
            f"negatively impacting {assets}."
        )


def _strip_prefix(text: str, prefix: str) -> str:
    text = text.strip().rstrip('.')
    if text.lower().startswith(prefix):
        return text[len(prefix):]
    return text


class DesignEnhancement(BaseModel):
    """A security gap in a design document and how to close it."""
    section: str = 'General'
    gap: str
    suggestion: str
    rationale: str
    severity: Severity = 'Medium'
    strideCategory: StrideCategory = 'Information Disclosure'


class PreCodeRisk(BaseModel):
    """An architectural risk created by a design decision or omission."""
    title: str
    category: StrideCategory = 'Information Disclosure'
    severity: Severity = 'Medium'
    component: str
    designDecision: str
    recommendation: str
    implementationPhase: ImplementationPhase = 'pre-code'


class DesignReview(BaseModel):
    """Design-time review of a document, produced before any code exists."""
    enhancements: list[DesignEnhancement] = Field(default_factory=list)
    preCodeRisks: list[PreCodeRisk] = Field(default_factory=list)
    contextLayer: str = ''


class ThreatModelRun(BaseModel):
    """The artefacts produced by one pipeline run."""
    analysis: AnalysisResult
    diagram: str
    threats: list[ThreatRecord] = Field(default_factory=list)
    designReview: Optional[DesignReview] = None
    framework: Framework = 'STRIDE'
    synthesizer: str = 'rule-based'
    generatedAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
