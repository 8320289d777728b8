"""Regex-based security pattern scanner."""

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Sequence

from .collector import CollectedSource
from .errors import ScanError
from .risk_engine import SEVERITY_RANK
from .schemas import Finding

logger = logging.getLogger(__name__)

MAX_FINDINGS_PER_FILE = 10
SNIPPET_LENGTH = 200

SCANNABLE_EXTENSIONS = frozenset({
    '.ts', '.tsx', '.js', '.jsx', '.py', '.go', '.rs', '.java',
    '.cs', '.c', '.cpp', '.rb', '.php', '.yaml', '.yml', '.json',
    '.env', '.cfg', '.conf', '.ini', '.toml',
})


@dataclass(frozen=True)
class Detector:
    """A named security pattern with a fixed severity."""
    name: str
    pattern: re.Pattern
    severity: str
    description: str


DETECTORS: tuple[Detector, ...] = (
    Detector(
        name='hardcoded_secret',
        pattern=re.compile(
            r'''(?:api[_-]?key|apikey|secret|password|passwd|token|auth)(?:[_-]?(?:key|token|secret|pass(?:word)?))?["']?\s*[:=]\s*["'][^"']{8,}["']''',
            re.IGNORECASE,
        ),
        severity='Critical',
        description='Hardcoded secret or API key found',
    ),
    Detector(
        name='sql_concatenation',
        pattern=re.compile(
            r'''(?:execute|query|raw)\s*\(\s*(?:f["']|["'][^"'\n]*["']\s*\+|`[^`]*\$\{)''',
            re.IGNORECASE,
        ),
        severity='Critical',
        description='Potential SQL injection via string concatenation',
    ),
    Detector(
        name='eval_usage',
        pattern=re.compile(r'\b(?:eval|exec)\s*\('),
        severity='High',
        description='Use of eval/exec which may allow code injection',
    ),
    Detector(
        name='missing_https',
        pattern=re.compile(r'http://(?!localhost|127\.0\.0\.1|0\.0\.0\.0)'),
        severity='Medium',
        description='Non-HTTPS URL found (potential cleartext transmission)',
    ),
    Detector(
        name='command_injection',
        pattern=re.compile(r'(?:child_process(?:\.\w+)?|subprocess\.\w+|os\.system|os\.popen|Runtime\.exec)\s*\('),
        severity='High',
        description='System command execution (potential command injection)',
    ),
    Detector(
        name='cors_wildcard',
        pattern=re.compile(
            r'''(?:Access-Control-Allow-Origin|cors)["']?\s*[:=,]\s*["']\*["']''',
            re.IGNORECASE,
        ),
        severity='Medium',
        description='CORS wildcard configuration',
    ),
    Detector(
        name='debug_enabled',
        pattern=re.compile(r'''(?:DEBUG|debug)\s*[:=]\s*(?:true|True|1\b|["']true["'])'''),
        severity='Low',
        description='Debug mode enabled',
    ),
    Detector(
        name='no_auth_check',
        pattern=re.compile(
            r'(?:@app\.route|router\.(?:get|post|put|delete|patch))\s*'
            r'\((?![^)\n]*(?:auth|protect|guard))[^)\n]*\)[ \t]*\n'
            r'(?![^\n]*(?:@require_auth|@login_required|@authenticated|auth|protect|guard))',
        ),
        severity='High',
        description='Route handler potentially missing authentication',
    ),
    Detector(
        name='insecure_deserialization',
        pattern=re.compile(r'(?:pickle\.loads|yaml\.load\s*\((?!.*Loader)|unserialize|JSON\.parse\s*\(\s*req)'),
        severity='High',
        description='Potentially insecure deserialization',
    ),
    Detector(
        name='weak_crypto',
        pattern=re.compile(r'\b(?:md5|sha1|DES|RC4)\b', re.IGNORECASE),
        severity='Medium',
        description='Weak cryptographic algorithm usage',
    ),
)

DETECTORS_BY_NAME = {d.name: d for d in DETECTORS}


def is_scannable(rel_path: str) -> bool:
    ext = os.path.splitext(rel_path)[1].lower()
    return ext in SCANNABLE_EXTENSIONS or '.env' in rel_path


def scan_text(
    rel_path: str,
    content: str,
    detectors: Sequence[Detector] = DETECTORS,
    max_per_file: int = MAX_FINDINGS_PER_FILE,
) -> list[Finding]:
    """Run every detector over one file's text, in registration order."""
    findings: list[Finding] = []
    lines = content.split('\n')
    for detector in detectors:
        for match in detector.pattern.finditer(content):
            if len(findings) >= max_per_file:
                return findings
            line_num = content.count('\n', 0, match.start()) + 1
            snippet = lines[line_num - 1].strip()[:SNIPPET_LENGTH] if line_num <= len(lines) else ''
            findings.append(Finding(
                file=rel_path,
                line=line_num,
                pattern=detector.name,
                snippet=snippet,
                severity=detector.severity,
            ))
    return findings


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Order findings by severity, most severe first. Stable within a severity."""
    return sorted(findings, key=lambda f: SEVERITY_RANK.get(f.severity, len(SEVERITY_RANK)))


class PatternScanner:
    """Scans a collected file set with a registry of detectors."""

    def __init__(
        self,
        detectors: Sequence[Detector] = DETECTORS,
        max_per_file: int = MAX_FINDINGS_PER_FILE,
        workers: int = 1,
    ):
        self.detectors = tuple(detectors)
        self.max_per_file = max_per_file
        self.workers = max(1, workers)

    def scan_file(self, source: CollectedSource, rel_path: str) -> list[Finding]:
        try:
            content = source.read_text(rel_path)
        except ScanError as e:
            logger.debug("Skipping unreadable file: %s", e)
            return []
        return scan_text(rel_path, content, self.detectors, self.max_per_file)

    def scan(self, source: CollectedSource) -> list[Finding]:
        """Scan every scannable file. Results are in file order, then detector order."""
        targets = [f for f in source.files if is_scannable(f)]
        if self.workers == 1 or len(targets) < 2:
            per_file = [self.scan_file(source, f) for f in targets]
        else:
            # Each task owns its file's cap, so no counter is shared between threads
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                per_file = list(executor.map(lambda f: self.scan_file(source, f), targets))
        findings = [finding for file_findings in per_file for finding in file_findings]
        logger.info("Scanned %d files, %d findings", len(targets), len(findings))
        return findings
