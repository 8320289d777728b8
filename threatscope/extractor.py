"""Architecture extraction - heuristic components, data flows and trust boundaries."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .collector import CollectedSource, detect_frameworks, detect_languages, find_entry_points
from .errors import ScanError
from .schemas import AnalysisResult, Component, DataFlow, Finding, TrustBoundary

logger = logging.getLogger(__name__)

END_USER = 'End User'
API_SERVER = 'API Server'
FRONTEND = 'Frontend Application'
DATABASE = 'Database'
MESSAGE_QUEUE = 'Message Queue'
AUTH_SERVICE = 'Auth Service'
INFRASTRUCTURE = 'Infrastructure'
API_GATEWAY = 'API Gateway'
APPLICATION = 'Application'

APPLICATION_BOUNDARY = 'Application Boundary'
EXTERNAL_BOUNDARY = 'External'
INFRASTRUCTURE_BOUNDARY = 'Infrastructure'

SOURCE_FILE = re.compile(r'\.(ts|js|py|go|rs|java|cs|rb|php)$')


@dataclass(frozen=True)
class ComponentRule:
    """Classifies files into one component by path or content."""
    name: str
    type: str
    description: str
    max_files: int
    path_patterns: tuple[re.Pattern, ...] = ()
    content_pattern: Optional[re.Pattern] = None
    require_all_paths: bool = False

    def matches_path(self, rel_path: str) -> bool:
        if not self.path_patterns:
            return False
        if self.require_all_paths:
            return all(p.search(rel_path) for p in self.path_patterns)
        return any(p.search(rel_path) for p in self.path_patterns)


COMPONENT_RULES: tuple[ComponentRule, ...] = (
    ComponentRule(
        name=API_SERVER, type='api',
        description='API layer with {count} route/controller files',
        max_files=20,
        path_patterns=(
            re.compile(r'(?:routes?|controllers?|handlers?|api|endpoints?)/', re.IGNORECASE),
            re.compile(r'(?:routes?|controllers?|handlers?)\.(?:ts|js|py|go)$', re.IGNORECASE),
        ),
    ),
    ComponentRule(
        name=FRONTEND, type='frontend',
        description='Frontend with {count} component/page files',
        max_files=20,
        path_patterns=(
            re.compile(r'(?:pages?|views?|components?|screens?)/', re.IGNORECASE),
            re.compile(r'\.[tj]sx?$'),
        ),
        require_all_paths=True,
    ),
    ComponentRule(
        name=DATABASE, type='database',
        description='Data persistence layer',
        max_files=10,
        content_pattern=re.compile(
            r'(?:mongoose|sequelize|prisma|typeorm|knex|sqlalchemy|gorm|diesel|pg|mysql|mongodb|redis)',
            re.IGNORECASE,
        ),
    ),
    ComponentRule(
        name=MESSAGE_QUEUE, type='queue',
        description='Asynchronous messaging layer',
        max_files=10,
        content_pattern=re.compile(r'(?:mqtt|kafka|rabbitmq|sqs|pubsub|amqp|bull|celery|nats)', re.IGNORECASE),
    ),
    ComponentRule(
        name=AUTH_SERVICE, type='service',
        description='Authentication and authorization service',
        max_files=10,
        path_patterns=(re.compile(r'(?:auth|login|session|jwt|oauth|passport|guard)', re.IGNORECASE),),
    ),
    ComponentRule(
        name=INFRASTRUCTURE, type='config',
        description='Infrastructure and configuration files',
        max_files=10,
        path_patterns=(
            re.compile(r'(?:Dockerfile|docker-compose|\.tf$|cloudformation|k8s|helm)', re.IGNORECASE),
            re.compile(r'\.env$'),
            re.compile(r'\.env\.example$'),
        ),
    ),
    ComponentRule(
        name=API_GATEWAY, type='gateway',
        description='API gateway or reverse proxy',
        max_files=10,
        path_patterns=(re.compile(r'(?:gateway|proxy|nginx|haproxy|envoy|middleware)', re.IGNORECASE),),
    ),
)


@dataclass(frozen=True)
class FlowRule:
    """One row of the data flow table: a flow emitted when both ends exist."""
    source: str
    target: str
    protocol: str
    data_type: str


# Evaluated once, top to bottom. The first two rows are mutually exclusive
# with the End User -> API/Gateway row, handled in _infer_data_flows.
FLOW_RULES: tuple[FlowRule, ...] = (
    FlowRule(API_GATEWAY, API_SERVER, 'HTTP/Internal', 'Proxied Requests'),
    FlowRule(API_SERVER, AUTH_SERVICE, 'Internal', 'Auth Tokens'),
    FlowRule(API_SERVER, DATABASE, 'TCP', 'Queries/Data'),
    FlowRule(AUTH_SERVICE, DATABASE, 'TCP', 'User Credentials'),
    FlowRule(API_SERVER, MESSAGE_QUEUE, 'AMQP/MQTT', 'Events/Commands'),
)


class ArchitectureExtractor:
    """Infers a coarse component graph from a collected file set."""

    def __init__(self, rules: tuple[ComponentRule, ...] = COMPONENT_RULES, file_tree_limit: int = 200):
        self.rules = rules
        self.file_tree_limit = file_tree_limit

    def _read_contents(self, source: CollectedSource) -> dict[str, str]:
        contents = {}
        for rel_path in source.files:
            try:
                contents[rel_path] = source.read_text(rel_path)
            except ScanError:
                continue
        return contents

    def extract_components(self, source: CollectedSource) -> list[Component]:
        needs_content = any(rule.content_pattern for rule in self.rules)
        contents = self._read_contents(source) if needs_content else {}

        components = []
        for rule in self.rules:
            if rule.content_pattern is not None:
                matched = [f for f in source.files if f in contents and rule.content_pattern.search(contents[f])]
            else:
                matched = [f for f in source.files if rule.matches_path(f)]
            if not matched:
                continue
            components.append(Component(
                name=rule.name,
                type=rule.type,
                files=matched[:rule.max_files],
                description=rule.description.format(count=len(matched)),
            ))

        if not components:
            src_files = [f for f in source.files if SOURCE_FILE.search(f)]
            components.append(Component(
                name=APPLICATION,
                type='service',
                files=src_files[:20],
                description=f'Application with {len(src_files)} source files',
            ))

        components.append(Component(
            name=END_USER,
            type='external',
            files=[],
            description='External user accessing the application',
        ))
        return components

    def _infer_data_flows(self, components: list[Component]) -> list[DataFlow]:
        names = {c.name for c in components}
        has_api = API_SERVER in names
        flows = []

        if FRONTEND in names and has_api:
            flows.append(DataFlow(source=END_USER, target=FRONTEND, protocol='HTTPS', dataType='User Requests'))
            flows.append(DataFlow(source=FRONTEND, target=API_SERVER, protocol='HTTPS/REST', dataType='API Calls'))
        elif has_api:
            entry = API_GATEWAY if API_GATEWAY in names else API_SERVER
            flows.append(DataFlow(source=END_USER, target=entry, protocol='HTTPS', dataType='API Requests'))

        for rule in FLOW_RULES:
            if rule.source in names and rule.target in names:
                flows.append(DataFlow(
                    source=rule.source, target=rule.target,
                    protocol=rule.protocol, dataType=rule.data_type,
                ))
        return flows

    def _build_trust_boundaries(self, components: list[Component]) -> list[TrustBoundary]:
        boundaries = []
        internal = [c.name for c in components if c.type != 'external']
        if internal:
            boundaries.append(TrustBoundary(name=APPLICATION_BOUNDARY, components=internal))
        external = [c.name for c in components if c.type == 'external']
        if external:
            boundaries.append(TrustBoundary(name=EXTERNAL_BOUNDARY, components=external))
        infra = next((c for c in components if c.type == 'config'), None)
        if infra:
            boundaries.append(TrustBoundary(name=INFRASTRUCTURE_BOUNDARY, components=[infra.name]))
        return boundaries

    def extract(self, source: CollectedSource) -> tuple[list[Component], list[DataFlow], list[TrustBoundary]]:
        components = self.extract_components(source)
        flows = self._infer_data_flows(components)
        boundaries = self._build_trust_boundaries(components)
        logger.info(
            "Extracted %d components, %d data flows, %d trust boundaries",
            len(components), len(flows), len(boundaries),
        )
        return components, flows, boundaries

    def analyze(self, source: CollectedSource, findings: list[Finding]) -> AnalysisResult:
        """Combine the file set, findings and inferred architecture into one result."""
        components, flows, boundaries = self.extract(source)
        return AnalysisResult(
            source=source.source,
            languages=detect_languages(source.files),
            frameworks=detect_frameworks(source.root, source.files),
            components=components,
            dataFlows=flows,
            trustBoundaries=boundaries,
            securityFindings=findings,
            fileTree=source.files[:self.file_tree_limit],
            entryPoints=find_entry_points(source.files),
        )
