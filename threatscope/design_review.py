"""Design review of documents before any code is written."""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader

from .config import Settings
from .llm_client import ModelClient
from .parser import parse_enhancements_response, parse_pre_code_risks_response
from .prompts import validate_framework
from .schemas import DesignEnhancement, DesignReview, PreCodeRisk, ThreatRecord
from .synthesis import ModelSynthesizer, ThreatSynthesizer

logger = logging.getLogger(__name__)

ENHANCEMENTS_SYSTEM_PROMPT = """You are a Principal Security Architect reviewing a design document BEFORE any code is written.
Identify 5-15 security gaps in the design itself:
- Missing security controls
- Ambiguous requirements
- Absent trust boundaries
- Missing encryption/auth specs
- Missing operational security (logging, monitoring, incident response)

For each gap provide:
- section: the section of the document where the gap exists
- gap: description of the security gap
- suggestion: specific actionable suggestion to address the gap
- rationale: why this gap matters from a security perspective
- severity: Critical | High | Medium | Low
- strideCategory: the most relevant STRIDE category (Spoofing, Tampering, Repudiation, Information Disclosure, Denial of Service, or Elevation of Privilege)

Output ONLY valid JSON array. No markdown, no explanation, just the JSON array."""

PRE_CODE_RISKS_SYSTEM_PROMPT = """You are a Principal Security Architect performing pre-implementation risk analysis.
Identify ARCHITECTURAL RISKS: design decisions and omissions that create systemic vulnerabilities. NOT runtime threats.

Focus on:
- Unnecessary attack surface
- Component coupling preventing security isolation
- Data flow exposing sensitive data
- Missing defense in depth
- Scalability decisions affecting security
- Technology choices with security implications
- Missing operational requirements (key rotation, cert management)
- Compliance gaps

For each risk provide:
- title: concise risk title
- category: STRIDE category (Spoofing, Tampering, Repudiation, Information Disclosure, Denial of Service, or Elevation of Privilege)
- severity: Critical | High | Medium | Low
- component: the specific component or area affected
- designDecision: the design decision or omission that creates this risk
- recommendation: actionable recommendation to mitigate
- implementationPhase: "pre-code" (must be addressed before coding) or "during-code" (can be addressed during implementation)

Output ONLY valid JSON array. No markdown, no explanation, just the JSON array."""

CONTEXT_LAYER_SECTIONS = (
    'Project Security Overview',
    'Security Requirements',
    'Trust Boundaries',
    'Authentication & Authorization Patterns',
    'Data Handling Rules',
    'Input Validation Requirements',
    'Error Handling & Security',
    'Logging & Audit Requirements',
    'Dependency & Configuration Security',
    'Security Testing Requirements',
)

CONTEXT_LAYER_SYSTEM_PROMPT = """You are a Principal Security Architect generating a security context file that will be consumed by an AI coding agent.

The file must be structured Markdown usable as CLAUDE.md, AGENTS.md, or .cursorrules.
Use imperative tone (rules, not suggestions). Be specific to the actual components described.

Required sections:
1. Project Security Overview (2-3 sentences)
2. Security Requirements (MUST/MUST NOT numbered list)
3. Trust Boundaries (each boundary, crossing rules, validation)
4. Authentication & Authorization Patterns
5. Data Handling Rules (classification table, masking, retention)
6. Input Validation Requirements
7. Error Handling & Security
8. Logging & Audit Requirements
9. Dependency & Configuration Security
10. Security Testing Requirements

Output ONLY the raw Markdown. Do NOT wrap in code blocks. Do NOT include any preamble or explanation."""

_MARKDOWN_FENCE = re.compile(r'^```(?:markdown|md)?\s*\n([\s\S]*?)\n```$')


def build_review_prompt(content: str, name: str, framework: str, instructions: str, max_chars: int = 15000) -> str:
    return (
        f"## Design Document: {name}\n\n"
        f"## Framework: {framework}\n\n"
        f"## Document Content\n{content[:max_chars]}\n\n"
        f"## Instructions\n{instructions}"
    )


def build_context_layer_prompt(
    content: str,
    name: str,
    threats: list[ThreatRecord],
    enhancements: list[DesignEnhancement],
    risks: list[PreCodeRisk],
    max_chars: int = 10000,
) -> str:
    threat_summary = '\n'.join(f"- {t.title} [{t.strideCategory}] ({t.severity})" for t in threats)
    enhancement_summary = '\n'.join(f"- [{e.section}] {e.gap} -> {e.suggestion}" for e in enhancements)
    risk_summary = '\n'.join(f"- {r.title} [{r.component}] -> {r.recommendation}" for r in risks)
    return (
        f"## Design Document: {name}\n\n"
        f"## Document Content\n{content[:max_chars]}\n\n"
        f"## Identified Threats\n{threat_summary or 'No threats identified yet.'}\n\n"
        f"## Design Enhancements\n{enhancement_summary or 'No enhancements identified yet.'}\n\n"
        f"## Pre-Code Risks\n{risk_summary or 'No risks identified yet.'}\n\n"
        "## Instructions\nGenerate a security context file based on the design document and the identified "
        "threats, enhancements, and risks above. The file must be structured Markdown with all 10 required "
        "sections. Use imperative tone and be specific to the actual components described in the document. "
        "Output ONLY the raw Markdown."
    )


def strip_markdown_fence(text: str) -> str:
    """Unwrap a response that arrived inside a ```markdown fence."""
    markdown = (text or '').strip()
    match = _MARKDOWN_FENCE.match(markdown)
    if match:
        return match.group(1).strip()
    return markdown


class DesignReviewer(ABC):
    """Reviews a design document before any code is written."""

    name: str = 'abstract'

    @abstractmethod
    def enhancements(self, content: str, name: str, framework: str = 'STRIDE') -> list[DesignEnhancement]:
        ...

    @abstractmethod
    def pre_code_risks(self, content: str, name: str, framework: str = 'STRIDE') -> list[PreCodeRisk]:
        ...

    @abstractmethod
    def context_layer(
        self,
        content: str,
        name: str,
        threats: list[ThreatRecord],
        enhancements: list[DesignEnhancement],
        risks: list[PreCodeRisk],
    ) -> str:
        ...

    def review(self, content: str, name: str, framework: str, threats: list[ThreatRecord]) -> DesignReview:
        """Gaps and risks first, then the context file that summarizes them with the threats."""
        validate_framework(framework)
        enhancements = self.enhancements(content, name, framework)
        risks = self.pre_code_risks(content, name, framework)
        logger.info("Design review of %s: %d enhancements, %d pre-code risks", name, len(enhancements), len(risks))
        return DesignReview(
            enhancements=enhancements,
            preCodeRisks=risks,
            contextLayer=self.context_layer(content, name, threats, enhancements, risks),
        )


class ModelDesignReviewer(DesignReviewer):
    """Asks the chat model for each part of the review."""

    name = 'model'

    def __init__(self, client: ModelClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or Settings()

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        return self.client.complete(system_prompt, user_prompt, max_tokens=self.settings.review_max_tokens)

    def enhancements(self, content: str, name: str, framework: str = 'STRIDE') -> list[DesignEnhancement]:
        prompt = build_review_prompt(
            content, name, framework,
            "Review this design document and identify 5-15 security gaps in the design itself. For each gap "
            "provide: section, gap, suggestion, rationale, severity, and strideCategory. Output ONLY the JSON array.",
            self.settings.max_document_chars,
        )
        return parse_enhancements_response(self._complete(ENHANCEMENTS_SYSTEM_PROMPT, prompt))

    def pre_code_risks(self, content: str, name: str, framework: str = 'STRIDE') -> list[PreCodeRisk]:
        prompt = build_review_prompt(
            content, name, framework,
            "Perform a pre-implementation risk analysis on this design document. Identify 5-12 architectural "
            "risks: design decisions and omissions that create systemic vulnerabilities. For each risk provide: "
            "title, category, severity, component, designDecision, recommendation, and implementationPhase. "
            "Output ONLY the JSON array.",
            self.settings.max_document_chars,
        )
        return parse_pre_code_risks_response(self._complete(PRE_CODE_RISKS_SYSTEM_PROMPT, prompt))

    def context_layer(self, content, name, threats, enhancements, risks) -> str:
        prompt = build_context_layer_prompt(
            content, name, threats, enhancements, risks, self.settings.max_context_document_chars,
        )
        return strip_markdown_fence(self._complete(CONTEXT_LAYER_SYSTEM_PROMPT, prompt))


DESIGN_ENHANCEMENTS = (
    {
        'section': 'Authentication',
        'gap': 'No multi-factor authentication requirement specified',
        'suggestion': 'Require MFA for every user account and hardware-backed keys for administrative roles',
        'rationale': 'Password-only sign-in falls to credential stuffing and phishing',
        'severity': 'Critical',
        'strideCategory': 'Spoofing',
    },
    {
        'section': 'Data Storage',
        'gap': 'Encryption at rest not specified for sensitive data stores',
        'suggestion': 'Encrypt stores holding PII or business-sensitive data with AES-256 and keys held in a KMS',
        'rationale': 'Unencrypted data is exposed by stolen backups, disk images or physical access to storage',
        'severity': 'High',
        'strideCategory': 'Information Disclosure',
    },
    {
        'section': 'Operational Security',
        'gap': 'No centralized logging or monitoring architecture defined',
        'suggestion': 'Define a structured, centrally collected log pipeline with retention, alerting on '
                      'security events and tamper-evident storage',
        'rationale': 'Incidents that are not logged centrally cannot be detected, investigated or attributed',
        'severity': 'High',
        'strideCategory': 'Repudiation',
    },
    {
        'section': 'API Design',
        'gap': 'Input validation requirements not specified for API endpoints',
        'suggestion': 'Validate every endpoint against a schema with strict types and allow-listed values',
        'rationale': 'Missing input validation is the root cause of injection and business logic bypass',
        'severity': 'High',
        'strideCategory': 'Tampering',
    },
    {
        'section': 'Error Handling',
        'gap': 'No error handling strategy or error response format defined',
        'suggestion': 'Return a standard error body with safe codes and keep stack traces and internal paths '
                      'out of responses',
        'rationale': 'Verbose errors hand attackers the implementation details they need for targeted exploits',
        'severity': 'Medium',
        'strideCategory': 'Information Disclosure',
    },
)

PRE_CODE_RISKS = (
    {
        'title': 'No Encryption-at-Rest Strategy for Data Stores',
        'category': 'Information Disclosure',
        'severity': 'Critical',
        'component': 'Data Storage Layer',
        'designDecision': 'Sensitive data is stored without a mandate for encryption at rest or a key '
                          'management procedure',
        'recommendation': 'Mandate AES-256 encryption at rest, manage keys in a KMS and set a rotation '
                          'schedule before implementation starts',
        'implementationPhase': 'pre-code',
    },
    {
        'title': 'Authentication Service Tightly Coupled to Application Logic',
        'category': 'Spoofing',
        'severity': 'High',
        'component': 'Authentication Module',
        'designDecision': 'Authentication lives inside the application layer instead of behind its own '
                          'trust boundary',
        'recommendation': 'Isolate authentication as a dedicated service that talks to the application '
                          'through tokens and a strict interface contract',
        'implementationPhase': 'pre-code',
    },
    {
        'title': 'No API Rate Limiting or Throttling Architecture',
        'category': 'Denial of Service',
        'severity': 'High',
        'component': 'API Gateway',
        'designDecision': 'Public endpoints have no rate limiting, throttling or circuit breaking',
        'recommendation': 'Design per-IP and per-user rate limits at the gateway and add circuit breakers '
                          'with backpressure for downstream calls',
        'implementationPhase': 'pre-code',
    },
    {
        'title': 'No Secret Management Architecture Defined',
        'category': 'Information Disclosure',
        'severity': 'High',
        'component': 'Configuration Management',
        'designDecision': 'The design does not say how API keys, database credentials and encryption keys '
                          'are stored, rotated or read at runtime',
        'recommendation': 'Adopt a secrets manager such as HashiCorp Vault or AWS Secrets Manager with '
                          'rotation policies and least-privilege access',
        'implementationPhase': 'pre-code',
    },
    {
        'title': 'Audit Logging Not Designed as a First-Class Concern',
        'category': 'Repudiation',
        'severity': 'Medium',
        'component': 'Logging Infrastructure',
        'designDecision': 'Audit logging is not a stated requirement, so coverage of security events will be '
                          'incomplete',
        'recommendation': 'Specify the audited events, a structured log schema, tamper-evident storage and '
                          'SIEM integration as a cross-cutting concern',
        'implementationPhase': 'during-code',
    },
)


class RuleBasedDesignReviewer(DesignReviewer):
    """Deterministic review used when no model is configured.

    The gaps and risks are the baseline every design should answer; the
    context file is rendered from a Markdown template with the run's own
    threats, gaps and risks listed under the matching sections.
    """

    name = 'rule-based'

    def __init__(self, template_dir: Optional[Path] = None):
        if template_dir is None:
            template_dir = Path(__file__).parent / 'templates'
        self.env = Environment(loader=FileSystemLoader(template_dir), keep_trailing_newline=True)

    def enhancements(self, content: str, name: str, framework: str = 'STRIDE') -> list[DesignEnhancement]:
        validate_framework(framework)
        return [DesignEnhancement(**item) for item in DESIGN_ENHANCEMENTS]

    def pre_code_risks(self, content: str, name: str, framework: str = 'STRIDE') -> list[PreCodeRisk]:
        validate_framework(framework)
        return [PreCodeRisk(**item) for item in PRE_CODE_RISKS]

    def context_layer(self, content, name, threats, enhancements, risks) -> str:
        template = self.env.get_template('security-context.md')
        return template.render(
            name=name,
            threats=threats,
            enhancements=enhancements,
            pre_code_risks=[r for r in risks if r.implementationPhase == 'pre-code'],
            during_code_risks=[r for r in risks if r.implementationPhase == 'during-code'],
        )


def select_design_reviewer(synthesizer: ThreatSynthesizer, settings: Optional[Settings] = None) -> DesignReviewer:
    """Review with the same backend the threats come from."""
    if isinstance(synthesizer, ModelSynthesizer):
        return ModelDesignReviewer(synthesizer.client, settings or synthesizer.settings)
    return RuleBasedDesignReviewer()
