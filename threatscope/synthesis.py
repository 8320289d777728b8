"""Threat synthesizers: model-backed and rule-based implementations of one interface."""

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

from .config import Settings
from .llm_client import ModelClient
from .parser import parse_threats_response
from .prompts import build_document_prompt, build_repository_prompt, build_system_prompt, validate_framework
from .schemas import AnalysisResult, Finding, Mitigation, ThreatRecord

logger = logging.getLogger(__name__)


class ThreatSynthesizer(ABC):
    """Turns static analysis output (or a design document) into threat records."""

    name: str = 'abstract'

    @abstractmethod
    def synthesize(self, analysis: AnalysisResult, framework: str = 'STRIDE') -> list[ThreatRecord]:
        ...

    @abstractmethod
    def synthesize_document(self, content: str, name: str, framework: str = 'STRIDE') -> list[ThreatRecord]:
        ...


class ModelSynthesizer(ThreatSynthesizer):
    """Asks a chat model for the threat array and recovers records from its answer."""

    name = 'model'

    def __init__(self, client: ModelClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or Settings()

    def synthesize(self, analysis: AnalysisResult, framework: str = 'STRIDE') -> list[ThreatRecord]:
        validate_framework(framework)
        user_prompt = build_repository_prompt(
            analysis,
            framework,
            findings_limit=self.settings.prompt_findings_limit,
            entry_points_limit=self.settings.prompt_entry_points_limit,
        )
        return self._run(build_system_prompt(framework), user_prompt)

    def synthesize_document(self, content: str, name: str, framework: str = 'STRIDE') -> list[ThreatRecord]:
        validate_framework(framework)
        user_prompt = build_document_prompt(content, name, framework, self.settings.max_document_chars)
        return self._run(build_system_prompt(framework, document=True), user_prompt)

    def _run(self, system_prompt: str, user_prompt: str) -> list[ThreatRecord]:
        text = self.client.complete(system_prompt, user_prompt, max_tokens=self.settings.max_output_tokens)
        threats = parse_threats_response(text)
        logger.info("Model returned %d usable threats", len(threats))
        return threats


# Factor profiles chosen so the OWASP matrix lands on the named severity
SEVERITY_PROFILES = {
    'Critical': {
        'likelihood': {
            'skillLevel': 6, 'motive': 9, 'opportunity': 7, 'size': 9,
            'easeOfDiscovery': 7, 'easeOfExploit': 7, 'awareness': 6, 'intrusionDetection': 8,
        },
        'impact': {'confidentiality': 9, 'integrity': 7, 'availability': 5, 'accountability': 7},
    },
    'High': {
        'likelihood': {
            'skillLevel': 5, 'motive': 6, 'opportunity': 7, 'size': 6,
            'easeOfDiscovery': 5, 'easeOfExploit': 5, 'awareness': 4, 'intrusionDetection': 3,
        },
        'impact': {'confidentiality': 7, 'integrity': 7, 'availability': 5, 'accountability': 7},
    },
    'Medium': {
        'likelihood': {
            'skillLevel': 5, 'motive': 6, 'opportunity': 7, 'size': 6,
            'easeOfDiscovery': 5, 'easeOfExploit': 5, 'awareness': 4, 'intrusionDetection': 3,
        },
        'impact': {'confidentiality': 5, 'integrity': 4, 'availability': 3, 'accountability': 5},
    },
    'Low': {
        'likelihood': {
            'skillLevel': 5, 'motive': 6, 'opportunity': 7, 'size': 6,
            'easeOfDiscovery': 5, 'easeOfExploit': 5, 'awareness': 4, 'intrusionDetection': 3,
        },
        'impact': {'confidentiality': 2, 'integrity': 1, 'availability': 1, 'accountability': 3},
    },
}

STRIDE_IMPACTS = {
    'Spoofing': 'identity impersonation',
    'Tampering': 'unauthorized data modification',
    'Repudiation': 'inability to trace malicious actions',
    'Information Disclosure': 'exposure of sensitive data',
    'Denial of Service': 'service unavailability',
    'Elevation of Privilege': 'unauthorized access to privileged operations',
}

FINDING_TEMPLATES = {
    'hardcoded_secret': {
        'stride': 'Information Disclosure',
        'owasp': 'A02',
        'title': 'Hardcoded Secret in {file}',
        'mitigation': 'Move the secret to a secrets manager or environment variable and rotate the exposed value',
    },
    'sql_concatenation': {
        'stride': 'Tampering',
        'owasp': 'A03',
        'title': 'SQL Injection via String Concatenation in {file}',
        'mitigation': 'Use parameterized queries or the ORM query builder instead of string concatenation',
    },
    'eval_usage': {
        'stride': 'Elevation of Privilege',
        'owasp': 'A03',
        'title': 'Code Injection via eval in {file}',
        'mitigation': 'Remove dynamic evaluation; parse input with a safe, purpose-built parser',
    },
    'missing_https': {
        'stride': 'Information Disclosure',
        'owasp': 'A02',
        'title': 'Cleartext HTTP Transmission in {file}',
        'mitigation': 'Use HTTPS endpoints and enforce TLS for all outbound connections',
    },
    'command_injection': {
        'stride': 'Elevation of Privilege',
        'owasp': 'A03',
        'title': 'Command Injection in {file}',
        'mitigation': 'Avoid shell execution; pass arguments as a list and validate them against an allow-list',
    },
    'cors_wildcard': {
        'stride': 'Spoofing',
        'owasp': 'A05',
        'title': 'Wildcard CORS Policy in {file}',
        'mitigation': 'Restrict allowed origins to an explicit list of trusted domains',
    },
    'debug_enabled': {
        'stride': 'Information Disclosure',
        'owasp': 'A05',
        'title': 'Debug Mode Enabled in {file}',
        'mitigation': 'Disable debug mode outside development and drive it from environment configuration',
    },
    'no_auth_check': {
        'stride': 'Spoofing',
        'owasp': 'A01',
        'title': 'Unauthenticated Route Handler in {file}',
        'mitigation': 'Apply authentication middleware or decorators to every non-public route',
    },
    'insecure_deserialization': {
        'stride': 'Tampering',
        'owasp': 'A08',
        'title': 'Insecure Deserialization in {file}',
        'mitigation': 'Deserialize untrusted input only with safe loaders and validate it against a schema',
    },
    'weak_crypto': {
        'stride': 'Information Disclosure',
        'owasp': 'A02',
        'title': 'Weak Cryptographic Algorithm in {file}',
        'mitigation': 'Replace the weak algorithm with SHA-256 or better, or a dedicated password hash',
    },
}

DEFAULT_FINDING_TEMPLATE = {
    'stride': 'Information Disclosure',
    'owasp': 'A04',
    'title': 'Insecure Pattern in {file}',
    'mitigation': 'Review the flagged code and apply secure coding practices',
}

ARCHITECTURE_TEMPLATES = [
    {
        'title': 'Insufficient Authentication on API Gateway',
        'stride': 'Spoofing',
        'owasp': 'A07',
        'severity': 'High',
        'boundary': 'Client → API',
        'impact': 'unauthorized identity assumption',
        'mitigation': 'Implement multi-factor authentication and token validation',
    },
    {
        'title': 'Missing Rate Limiting on Public Endpoints',
        'stride': 'Denial of Service',
        'owasp': 'A04',
        'severity': 'High',
        'boundary': 'External → Internal',
        'impact': 'resource exhaustion and service degradation',
        'mitigation': 'Implement rate limiting with exponential backoff',
    },
    {
        'title': 'Insecure Data Transmission Between Services',
        'stride': 'Information Disclosure',
        'owasp': 'A02',
        'severity': 'Medium',
        'boundary': 'Service → Service',
        'impact': 'leakage of sensitive business data',
        'mitigation': 'Implement TLS 1.3 for all inter-service communication',
    },
    {
        'title': 'Missing Audit Logging for Administrative Actions',
        'stride': 'Repudiation',
        'owasp': 'A09',
        'severity': 'Medium',
        'boundary': 'Admin → System',
        'impact': 'inability to audit security-relevant events',
        'mitigation': 'Implement comprehensive audit logging with tamper-proof storage',
    },
    {
        'title': 'Improper Input Validation at Trust Boundary',
        'stride': 'Tampering',
        'owasp': 'A03',
        'severity': 'High',
        'boundary': 'External → Internal',
        'impact': 'unauthorized modification of application state',
        'mitigation': 'Implement strict input validation and schema enforcement',
    },
    {
        'title': 'Overly Permissive Role-Based Access Controls',
        'stride': 'Elevation of Privilege',
        'owasp': 'A01',
        'severity': 'Critical',
        'boundary': 'User → Admin',
        'impact': 'privilege escalation to administrative functions',
        'mitigation': 'Implement least-privilege RBAC with regular access reviews',
    },
]

MIN_ARCHITECTURE_THREATS = 2
TARGET_THREAT_COUNT = 8

DOCUMENT_THREATS = [
    {
        'title': 'Insufficient Authentication in Proposed Architecture',
        'strideCategory': 'Spoofing',
        'severity': 'High',
        'owasp': 'A07',
        'threatSource': 'An external attacker',
        'prerequisites': 'access to the public-facing endpoints described in the design',
        'threatAction': 'forge authentication tokens or bypass identity verification',
        'threatImpact': 'unauthorized access to protected resources',
        'impactedAssets': ['Authentication Service', 'User Data Store', 'API Gateway'],
        'trustBoundary': 'External → Internal',
        'assumptions': ['The system is internet-facing', 'Authentication relies on bearer tokens'],
        'mitigation': (
            'Implement OAuth 2.0 with PKCE flow, enforce MFA for sensitive operations, '
            'use short-lived JWTs with refresh token rotation'
        ),
    },
    {
        'title': 'Data Tampering in Message Queue Processing',
        'strideCategory': 'Tampering',
        'severity': 'High',
        'owasp': 'A08',
        'threatSource': 'A malicious insider or compromised service',
        'prerequisites': 'access to the internal message bus or queue system',
        'threatAction': 'inject or modify messages in the processing pipeline',
        'threatImpact': 'corrupted business data and incorrect processing outcomes',
        'impactedAssets': ['Message Queue', 'Processing Pipeline', 'Data Store'],
        'trustBoundary': 'Service → Service',
        'assumptions': ['Inter-service communication is not end-to-end encrypted', 'Message integrity is not verified'],
        'mitigation': (
            'Sign messages with HMAC-SHA256, validate message integrity before processing, '
            'use TLS for all internal communication'
        ),
    },
    {
        'title': 'Missing Audit Trail for Critical Operations',
        'strideCategory': 'Repudiation',
        'severity': 'Medium',
        'owasp': 'A09',
        'threatSource': 'An authenticated user with elevated privileges',
        'prerequisites': 'valid credentials with administrative access',
        'threatAction': 'perform destructive actions without generating an audit trail',
        'threatImpact': 'inability to investigate security incidents or prove compliance',
        'impactedAssets': ['Admin Console', 'Configuration Store', 'All System Components'],
        'trustBoundary': 'Admin → System',
        'assumptions': ['The design does not specify comprehensive logging', 'Audit logs are stored locally'],
        'mitigation': (
            'Centralize append-only audit logging with tamper detection and record every '
            'state-changing operation with actor identity and timestamp'
        ),
    },
    {
        'title': 'Sensitive Data Exposure in API Responses',
        'strideCategory': 'Information Disclosure',
        'severity': 'Critical',
        'owasp': 'A01',
        'threatSource': 'An external attacker or authorized user exceeding their access level',
        'prerequisites': 'the ability to call API endpoints and inspect responses',
        'threatAction': 'extract sensitive information from verbose API responses or error messages',
        'threatImpact': 'exposure of PII, credentials, or internal system details',
        'impactedAssets': ['REST API', 'User Data', 'System Configuration'],
        'trustBoundary': 'External → API',
        'assumptions': ['API responses may include more data than the caller needs', 'Error responses expose stack traces'],
        'mitigation': (
            'Filter response fields by caller authorization, sanitize all error responses, '
            'use DTOs to control API response shape'
        ),
    },
    {
        'title': 'Resource Exhaustion via Unthrottled API Calls',
        'strideCategory': 'Denial of Service',
        'severity': 'High',
        'owasp': 'A04',
        'threatSource': 'An external attacker or compromised client',
        'prerequisites': 'network access to public API endpoints',
        'threatAction': 'send a high volume of requests to exhaust server resources',
        'threatImpact': 'service degradation or complete unavailability for legitimate users',
        'impactedAssets': ['API Gateway', 'Application Servers', 'Database'],
        'trustBoundary': 'External → Internal',
        'assumptions': ['No rate limiting is described in the design', 'Auto-scaling has finite limits'],
        'mitigation': (
            'Apply tiered rate limiting (per-IP, per-user, global), deploy WAF rules, '
            'use circuit breakers and cap auto-scaling spend'
        ),
    },
    {
        'title': 'Privilege Escalation Through Insecure Direct Object References',
        'strideCategory': 'Elevation of Privilege',
        'severity': 'Critical',
        'owasp': 'A01',
        'threatSource': 'An authenticated low-privilege user',
        'prerequisites': 'valid authentication credentials for any role',
        'threatAction': 'manipulate resource identifiers to access or modify resources belonging to other users or roles',
        'threatImpact': "unauthorized access to administrative functions and other users' data",
        'impactedAssets': ['Authorization Service', 'User Management', 'All Protected Resources'],
        'trustBoundary': 'User → Admin',
        'assumptions': ['Authorization checks rely on client-provided resource IDs', 'Role hierarchy enforcement may be incomplete'],
        'mitigation': (
            'Enforce server-side authorization for every resource access, use indirect object '
            'references (UUIDs), apply role-based access control at the data layer'
        ),
    },
]


def _title(title: str, owasp: str, framework: str) -> str:
    if framework == 'OWASP Top 10':
        return f'[{owasp}] {title}'
    return title


class RuleBasedSynthesizer(ThreatSynthesizer):
    """Derives threats from scanner findings and fixed architecture heuristics.

    Used when no model credentials are configured. Output is deterministic
    for a given analysis and carries the same schema as the model path.
    """

    name = 'rule-based'

    def synthesize(self, analysis: AnalysisResult, framework: str = 'STRIDE') -> list[ThreatRecord]:
        validate_framework(framework)
        boundary = analysis.trustBoundaries[0].name if analysis.trustBoundaries else 'External → Internal'
        threats = [self._finding_threat(finding, analysis, boundary, framework) for finding in analysis.securityFindings]

        count = max(MIN_ARCHITECTURE_THREATS, TARGET_THREAT_COUNT - len(threats))
        for template in ARCHITECTURE_TEMPLATES[:count]:
            threats.append(self._architecture_threat(template, analysis, len(threats), framework))

        logger.info("Rule-based synthesizer produced %d threats", len(threats))
        return threats

    def synthesize_document(self, content: str, name: str, framework: str = 'STRIDE') -> list[ThreatRecord]:
        validate_framework(framework)
        threats = []
        for template in DOCUMENT_THREATS:
            profile = SEVERITY_PROFILES[template['severity']]
            threats.append(ThreatRecord(
                title=_title(template['title'], template['owasp'], framework),
                strideCategory=template['strideCategory'],
                threatSource=template['threatSource'],
                prerequisites=template['prerequisites'],
                threatAction=template['threatAction'],
                threatImpact=template['threatImpact'],
                impactedAssets=list(template['impactedAssets']),
                trustBoundary=template['trustBoundary'],
                assumptions=[f'Derived from design document {name}'] + list(template['assumptions']),
                mitigations=[Mitigation(description=template['mitigation'])],
                owaspLikelihood=profile['likelihood'],
                owaspImpact=profile['impact'],
            ))
        return threats

    def _finding_threat(self, finding: Finding, analysis: AnalysisResult, boundary: str, framework: str) -> ThreatRecord:
        template = FINDING_TEMPLATES.get(finding.pattern, DEFAULT_FINDING_TEMPLATE)
        profile = SEVERITY_PROFILES[finding.severity]
        pattern = finding.pattern.replace('_', ' ')
        entry = 'API endpoint' if 'api' in finding.file.lower() else 'application input'
        return ThreatRecord(
            title=_title(template['title'].format(file=os.path.basename(finding.file)), template['owasp'], framework),
            strideCategory=template['stride'],
            threatSource='An external attacker',
            prerequisites=f'access to the {entry} that reaches this code path',
            threatAction=f'exploit {pattern} at {finding.file}:{finding.line}',
            threatImpact=STRIDE_IMPACTS[template['stride']],
            impactedAssets=[finding.file] + [c.name for c in analysis.components[:2]],
            trustBoundary=boundary,
            assumptions=[
                'Application is internet-facing',
                'Input validation is incomplete',
                f'The code in {finding.file} is reachable from external requests',
            ],
            mitigations=[Mitigation(
                description=template['mitigation'],
                codeFile=finding.file,
                codeLine=finding.line,
                codeOriginal=finding.snippet or None,
            )],
            owaspLikelihood=profile['likelihood'],
            owaspImpact=profile['impact'],
        )

    def _architecture_threat(self, template: dict, analysis: AnalysisResult, position: int, framework: str) -> ThreatRecord:
        component = analysis.components[position % len(analysis.components)] if analysis.components else None
        component_name = component.name if component else 'application'
        profile = SEVERITY_PROFILES[template['severity']]
        return ThreatRecord(
            title=_title(template['title'], template['owasp'], framework),
            strideCategory=template['stride'],
            threatSource='An authenticated or unauthenticated user',
            prerequisites=f'network access to the {component_name} component',
            threatAction=f"exploit {template['title'].lower()} at the {template['boundary']} boundary",
            threatImpact=template['impact'],
            impactedAssets=(component.files[:3] or [component.name]) if component else ['Application'],
            trustBoundary=template['boundary'],
            assumptions=[
                f'The {component_name} component handles sensitive operations',
                'Standard security controls may be incomplete',
            ],
            mitigations=[Mitigation(description=template['mitigation'])],
            owaspLikelihood=profile['likelihood'],
            owaspImpact=profile['impact'],
        )


def select_synthesizer(settings: Optional[Settings] = None) -> ThreatSynthesizer:
    """Pick the synthesizer implementation from configuration."""
    settings = settings or Settings()
    if settings.force_offline:
        logger.info("Offline mode requested; using rule-based synthesizer")
        return RuleBasedSynthesizer()
    if not settings.has_credentials:
        logger.warning("No model API key configured; using rule-based synthesizer")
        return RuleBasedSynthesizer()
    client = ModelClient(
        api_key=settings.api_key,
        model=settings.model,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        base_url=settings.base_url,
    )
    return ModelSynthesizer(client, settings)


def finalize_threats(threats: list[ThreatRecord]) -> list[ThreatRecord]:
    """Assign stable ids in order. Severity is recomputed by the model on every copy."""
    return [
        threat.model_copy(update={'id': f'THR-{index:03d}'})
        for index, threat in enumerate(threats, start=1)
    ]
