"""Prompt templates for model-backed threat synthesis."""

from .scanner import sort_findings
from .schemas import FRAMEWORKS, AnalysisResult


def validate_framework(framework: str) -> str:
    if framework not in FRAMEWORKS:
        raise ValueError(f"Unknown framework {framework!r}; expected one of: {', '.join(FRAMEWORKS)}")
    return framework


SYSTEM_PROMPT = """You are a Principal Security Review Engineer performing a threat model.
You produce structured threat statements following the threat grammar:

"A [threat source] with [prerequisites] can [threat action], which leads to [threat impact], negatively impacting [impacted assets]."

Rules:
1. Each threat MUST have a structured threat statement with all fields populated.
2. Classify each threat into exactly one STRIDE category: Spoofing, Tampering, Repudiation, Information Disclosure, Denial of Service, or Elevation of Privilege.
3. For EACH threat, estimate OWASP Risk Rating factors following the OWASP Risk Rating Methodology. Rate each likelihood and impact factor on a 0-9 scale. The severity field should reflect your assessment but will be recalculated from the OWASP risk matrix.
4. Identify the specific trust boundary being crossed.
5. List realistic assumptions.
6. Propose at least one mitigation per threat.
7. {evidence_rule}
8. Be specific and actionable. Avoid generic threats and reference actual components from the architecture.
9. Generate between 5 and 12 threats depending on the complexity of the architecture.
10. Do NOT invent file paths or line numbers that aren't in the provided data.

OWASP Likelihood Factors (rate each 0-9):
- skillLevel: 1=no skills, 3=some, 5=advanced, 6=network/programming, 9=security penetration
- motive: 1=low/no reward, 4=possible reward, 9=high reward
- opportunity: 0=full access required, 4=special access, 7=some access, 9=no access needed
- size: 2=developers/sysadmins, 4=intranet, 5=partners, 6=authenticated, 9=anonymous internet
- easeOfDiscovery: 1=impossible, 3=difficult, 7=easy, 9=automated tools
- easeOfExploit: 1=theoretical, 3=difficult, 5=easy, 9=automated tools
- awareness: 1=unknown, 4=hidden, 6=obvious, 9=public knowledge
- intrusionDetection: 1=active detection, 3=logged+reviewed, 8=logged only, 9=not logged

OWASP Technical Impact Factors (rate each 0-9):
- confidentiality: 2=minimal non-sensitive, 6=minimal critical or extensive non-sensitive, 7=extensive critical, 9=all data
- integrity: 1=minimal slight, 3=minimal serious, 5=extensive slight, 7=extensive serious, 9=all corrupt
- availability: 1=minimal secondary, 5=minimal primary or extensive secondary, 7=extensive primary, 9=all lost
- accountability: 1=fully traceable, 7=possibly traceable, 9=anonymous

Output ONLY valid JSON matching the schema below. No markdown, no explanation, just the JSON array."""

CODE_EVIDENCE_RULE = (
    "If source code files and security findings are provided, reference specific files, "
    "line numbers, and include code-level original/fixed snippets in mitigations."
)

PROSE_EVIDENCE_RULE = (
    "Since this is a design document (not source code), provide prose-based mitigations "
    "without code snippets."
)

OWASP_ADDENDUM = """

Additionally, map each threat to the most relevant OWASP Top 10:2021 category:
- A01: Broken Access Control
- A02: Cryptographic Failures
- A03: Injection
- A04: Insecure Design
- A05: Security Misconfiguration
- A06: Vulnerable and Outdated Components
- A07: Identification and Authentication Failures
- A08: Software and Data Integrity Failures
- A09: Security Logging and Monitoring Failures
- A10: Server-Side Request Forgery

Include the OWASP category in the threat title prefix (e.g., "[A03] SQL Injection in User Search").
Still classify into STRIDE categories as the primary framework."""

GRAMMAR_ADDENDUM = """

Write every threatSource, prerequisites, threatAction and threatImpact so that they read as one
sentence when substituted into the threat grammar above. Keep impactedAssets to concrete assets
(data, components, credentials) rather than abstract qualities."""

OUTPUT_SCHEMA = """
Output JSON Schema (array of objects):
[
  {
    "title": "string - concise threat title",
    "strideCategory": "Spoofing | Tampering | Repudiation | Information Disclosure | Denial of Service | Elevation of Privilege",
    "severity": "Critical | High | Medium | Low",
    "threatSource": "string - who/what is the threat actor",
    "prerequisites": "string - conditions required for the threat",
    "threatAction": "string - the specific action taken",
    "threatImpact": "string - the direct consequence",
    "impactedAssets": ["string - affected assets"],
    "trustBoundary": "string - which boundary is crossed",
    "assumptions": ["string - assumptions about the system"],
    "mitigations": [
      {
        "description": "string - mitigation description",
        "codeFile": "string (optional) - file path if code fix available",
        "codeLine": "number (optional)",
        "codeOriginal": "string (optional) - original vulnerable code",
        "codeFixed": "string (optional) - fixed code"
      }
    ],
    "relatedCve": "string (optional) - related CVE ID if applicable",
    "owaspLikelihood": {
      "skillLevel": "number 0-9",
      "motive": "number 0-9",
      "opportunity": "number 0-9",
      "size": "number 0-9",
      "easeOfDiscovery": "number 0-9",
      "easeOfExploit": "number 0-9",
      "awareness": "number 0-9",
      "intrusionDetection": "number 0-9"
    },
    "owaspImpact": {
      "confidentiality": "number 0-9",
      "integrity": "number 0-9",
      "availability": "number 0-9",
      "accountability": "number 0-9"
    }
  }
]"""


def build_system_prompt(framework: str, document: bool = False) -> str:
    prompt = SYSTEM_PROMPT.format(evidence_rule=PROSE_EVIDENCE_RULE if document else CODE_EVIDENCE_RULE)
    if framework == 'OWASP Top 10':
        prompt += OWASP_ADDENDUM
    elif framework == 'AWS Threat Grammar':
        prompt += GRAMMAR_ADDENDUM
    return prompt + '\n' + OUTPUT_SCHEMA


def build_repository_prompt(
    analysis: AnalysisResult,
    framework: str,
    findings_limit: int = 30,
    entry_points_limit: int = 15,
) -> str:
    sections = [
        f"## Repository: {analysis.source}",
        f"## Framework: {framework}",
        f"\n## Languages Detected\n{', '.join(analysis.languages) or 'Unknown'}",
        f"\n## Frameworks Detected\n{', '.join(analysis.frameworks) or 'None specifically detected'}",
    ]

    sections.append(f"\n## Architecture Components ({len(analysis.components)})")
    for comp in analysis.components:
        files = ', '.join(comp.files[:5])
        more = f" (+{len(comp.files) - 5} more)" if len(comp.files) > 5 else ''
        sections.append(f"- **{comp.name}** ({comp.type}): {comp.description}\n  Files: {files}{more}")

    flows = analysis.valid_data_flows()
    sections.append(f"\n## Data Flows ({len(flows)})")
    for flow in flows:
        sections.append(f"- {flow.source} -> {flow.target} [{flow.protocol}] ({flow.dataType})")

    sections.append(f"\n## Trust Boundaries ({len(analysis.trustBoundaries)})")
    for boundary in analysis.trustBoundaries:
        sections.append(f"- **{boundary.name}**: {', '.join(boundary.components)}")

    findings = analysis.securityFindings
    sections.append(f"\n## Security Findings from Code Scan ({len(findings)})")
    if not findings:
        sections.append("No specific patterns detected by static scan; analyze architecture for design-level threats.")
    for finding in sort_findings(findings)[:findings_limit]:
        sections.append(
            f"- **{finding.pattern}** [{finding.severity}] in `{finding.file}:{finding.line}`\n  `{finding.snippet}`"
        )

    sections.append("\n## Entry Points\n" + '\n'.join(analysis.entryPoints[:entry_points_limit]))
    sections.append(
        "\n## Instructions\nGenerate a comprehensive threat model for this repository. For each security "
        "finding above, map it to a specific threat with a code-level mitigation. For each trust boundary "
        f"crossing, assess relevant {framework} threats. Output ONLY the JSON array."
    )
    return '\n'.join(sections)


def build_document_prompt(content: str, name: str, framework: str, max_chars: int = 15000) -> str:
    return (
        f"## Design Document: {name}\n\n"
        f"## Framework: {framework}\n\n"
        f"## Document Content\n{content[:max_chars]}\n\n"
        "## Instructions\nGenerate a comprehensive threat model based on this design document. Since no "
        "source code is available, provide architectural-level threats with prose-based mitigation "
        "suggestions. Do NOT include codeFile, codeLine, codeOriginal, or codeFixed in mitigations. "
        "Output ONLY the JSON array."
    )
