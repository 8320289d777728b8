"""Data Flow Diagram (DFD) generator."""

import re

from graphviz import Digraph

from .schemas import AnalysisResult, Component


class DFDGenerator:
    """Generates Data Flow Diagram descriptions from an analysis result.

    Output is text only (Mermaid flowchart or Graphviz DOT source); turning
    it into an image is left to the consumer.
    """

    # (open, close) delimiters of the Mermaid node shape for each component type
    MERMAID_SHAPES = {
        'database': ('[(', ')]'),
        'external': ('[[', ']]'),
        'queue': ('>', ']'),
        'gateway': ('{{', '}}'),
    }
    DEFAULT_MERMAID_SHAPE = ('[', ']')

    DOT_SHAPES = {
        'database': 'cylinder',
        'external': 'box3d',
        'queue': 'cds',
        'gateway': 'hexagon',
    }

    # (class name, style, component types), emitted in this order
    CLASS_STYLES = (
        ('external', 'fill:#dbeafe,stroke:#3b82f6,stroke-width:2px,color:#1e40af', ('external',)),
        ('api', 'fill:#dcfce7,stroke:#22c55e,stroke-width:2px,color:#166534', ('api', 'gateway')),
        ('db', 'fill:#fef3c7,stroke:#f59e0b,stroke-width:2px,color:#92400e', ('database',)),
        ('service', 'fill:#f3e8ff,stroke:#a855f7,stroke-width:2px,color:#6b21a8', ('service',)),
        ('queue', 'fill:#ffe4e6,stroke:#f43f5e,stroke-width:2px,color:#9f1239', ('queue',)),
    )

    BOUNDARY_COLORS = {
        'Application Boundary': '#cce5ff',
        'External': '#f5c6cb',
        'Infrastructure': '#fff3cd',
    }

    def __init__(self, analysis: AnalysisResult):
        self.analysis = analysis
        self._node_ids = {comp.name: f'N{i}' for i, comp in enumerate(analysis.components)}
        self._component_map = {comp.name: comp for comp in analysis.components}

    def _group_by_boundary(self) -> tuple[list[tuple[str, list[str]]], list[str]]:
        """Split components into (boundary name, members) groups and ungrouped names."""
        groups = []
        grouped = set()
        for boundary in self.analysis.trustBoundaries:
            members = [name for name in boundary.components if name in self._node_ids]
            if members:
                groups.append((boundary.name, members))
                grouped.update(members)
        ungrouped = [c.name for c in self.analysis.components if c.name not in grouped]
        return groups, ungrouped

    def _safe_label(self, text: str) -> str:
        """Strip characters that are structural in Mermaid labels."""
        if not text:
            return ""
        return re.sub(r'[\[\]{}()#]', '', text.replace('"', "'"))

    def _render_node(self, component: Component) -> str:
        node_id = self._node_ids[component.name]
        open_, close = self.MERMAID_SHAPES.get(component.type, self.DEFAULT_MERMAID_SHAPE)
        return f'{node_id}{open_}"{self._safe_label(component.name)}"{close}'

    def to_mermaid(self) -> str:
        if not self.analysis.components:
            return 'graph LR\n  A[No components detected]'

        lines = ['graph LR']
        groups, ungrouped = self._group_by_boundary()

        for index, (boundary_name, members) in enumerate(groups):
            lines.append(f'  subgraph SG{index}["{self._safe_label(boundary_name)}"]')
            for name in members:
                lines.append(f'    {self._render_node(self._component_map[name])}')
            lines.append('  end')

        for name in ungrouped:
            lines.append(f'  {self._render_node(self._component_map[name])}')

        for flow in self.analysis.valid_data_flows():
            label = self._safe_label(flow.protocol or flow.dataType)
            lines.append(f'  {self._node_ids[flow.source]} -->|{label}| {self._node_ids[flow.target]}')

        lines.append('')
        lines.append('  %% Styling')
        for class_name, style, types in self.CLASS_STYLES:
            node_ids = [self._node_ids[c.name] for c in self.analysis.components if c.type in types]
            if node_ids:
                lines.append(f'  classDef {class_name} {style}')
                lines.append(f'  class {",".join(node_ids)} {class_name}')

        return '\n'.join(lines)

    def generate(self) -> Digraph:
        graph = Digraph(
            name='DFD',
            comment=f'Data Flow Diagram: {self.analysis.source or "analysis"}',
            engine='dot',
        )
        graph.attr(rankdir='LR', nodesep='0.8', ranksep='1.2', fontname='Arial', fontsize='12')
        graph.attr('node', fontname='Arial', fontsize='10')
        graph.attr('edge', fontname='Arial', fontsize='9')

        groups, ungrouped = self._group_by_boundary()
        for index, (boundary_name, members) in enumerate(groups):
            with graph.subgraph(name=f'cluster_{index}') as subgraph:
                subgraph.attr(
                    label=f'Trust Boundary: {boundary_name}',
                    style='dashed',
                    color='red' if boundary_name == 'External' else 'blue',
                    bgcolor=self.BOUNDARY_COLORS.get(boundary_name, '#ffffff'),
                )
                for name in members:
                    self._add_dot_node(subgraph, self._component_map[name])

        for name in ungrouped:
            self._add_dot_node(graph, self._component_map[name])

        for flow in self.analysis.valid_data_flows():
            graph.edge(
                self._node_ids[flow.source],
                self._node_ids[flow.target],
                label=flow.protocol or flow.dataType,
                tooltip=flow.dataType or flow.protocol,
            )
        return graph

    def _add_dot_node(self, graph: Digraph, component: Component) -> None:
        graph.node(
            self._node_ids[component.name],
            label=f'{component.name}\n[{component.type}]',
            shape=self.DOT_SHAPES.get(component.type, 'box'),
            style='filled',
            fillcolor='white',
            tooltip=component.description or component.name,
        )

    def to_dot(self) -> str:
        return self.generate().source


def generate_dfd(analysis: AnalysisResult) -> str:
    """Generate a Mermaid DFD description from an analysis result."""
    return DFDGenerator(analysis).to_mermaid()


def generate_dfd_dot(analysis: AnalysisResult) -> str:
    """Generate a Graphviz DOT DFD description from an analysis result."""
    return DFDGenerator(analysis).to_dot()
