"""End-to-end threat modeling pipeline: collect, scan, extract, render, synthesize."""

import logging
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Optional

from .collector import CollectedSource, collect_local, collect_repository
from .config import Settings, get_settings
from .design_review import DesignReviewer, select_design_reviewer
from .dfd_generator import generate_dfd
from .extractor import ArchitectureExtractor
from .prompts import validate_framework
from .scanner import PatternScanner
from .schemas import AnalysisResult, ThreatModelRun
from .synthesis import ThreatSynthesizer, finalize_threats, select_synthesizer

logger = logging.getLogger(__name__)


class ThreatModelPipeline:
    """Runs the static stages and the selected synthesizer over one source."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        synthesizer: Optional[ThreatSynthesizer] = None,
        scanner: Optional[PatternScanner] = None,
        extractor: Optional[ArchitectureExtractor] = None,
        reviewer: Optional[DesignReviewer] = None,
    ):
        self.settings = settings or get_settings()
        self.synthesizer = synthesizer or select_synthesizer(self.settings)
        self.scanner = scanner or PatternScanner(
            max_per_file=self.settings.max_findings_per_file,
            workers=self.settings.scan_workers,
        )
        self.extractor = extractor or ArchitectureExtractor(file_tree_limit=self.settings.file_tree_limit)
        self.reviewer = reviewer or select_design_reviewer(self.synthesizer, self.settings)

    def _analyze(self, collector: AbstractContextManager[CollectedSource]) -> AnalysisResult:
        with collector as source:
            logger.info("Collected %d files from %s", len(source.files), source.source)
            findings = self.scanner.scan(source)
            return self.extractor.analyze(source, findings)

    def analyze_repository(self, locator: str, session_id: Optional[str] = None) -> AnalysisResult:
        """Clone a remote repository and run the static stages over it."""
        return self._analyze(collect_repository(
            locator,
            session_id=session_id,
            max_files=self.settings.max_files,
            max_file_size=self.settings.max_file_size,
        ))

    def analyze_path(self, path: str | Path) -> AnalysisResult:
        """Run the static stages over a local directory."""
        return self._analyze(collect_local(
            path,
            max_files=self.settings.max_files,
            max_file_size=self.settings.max_file_size,
        ))

    def build_run(self, analysis: AnalysisResult, framework: str = 'STRIDE') -> ThreatModelRun:
        validate_framework(framework)
        diagram = generate_dfd(analysis)
        threats = finalize_threats(self.synthesizer.synthesize(analysis, framework))
        return ThreatModelRun(
            analysis=analysis,
            diagram=diagram,
            threats=threats,
            framework=framework,
            synthesizer=self.synthesizer.name,
        )

    def run_repository(self, locator: str, framework: str = 'STRIDE', session_id: Optional[str] = None) -> ThreatModelRun:
        validate_framework(framework)
        return self.build_run(self.analyze_repository(locator, session_id), framework)

    def run_path(self, path: str | Path, framework: str = 'STRIDE') -> ThreatModelRun:
        validate_framework(framework)
        return self.build_run(self.analyze_path(path), framework)

    def run(self, locator: str, framework: str = 'STRIDE') -> ThreatModelRun:
        """Analyze a local directory if locator names one, otherwise clone it."""
        if Path(locator).is_dir():
            return self.run_path(locator, framework)
        return self.run_repository(locator, framework)

    def run_document(self, content: str, name: str, framework: str = 'STRIDE') -> ThreatModelRun:
        """Threat-model and review a design document. No code is scanned.

        The review's context file summarizes the finalized threats, so it runs last.
        """
        validate_framework(framework)
        analysis = AnalysisResult(source=name)
        threats = finalize_threats(self.synthesizer.synthesize_document(content, name, framework))
        review = self.reviewer.review(content, name, framework, threats)
        return ThreatModelRun(
            analysis=analysis,
            diagram=generate_dfd(analysis),
            threats=threats,
            designReview=review,
            framework=framework,
            synthesizer=self.synthesizer.name,
        )
