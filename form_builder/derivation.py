"""
Derivation graph and evaluator for computed form fields.

The graph is rebuilt from the field list on every recomputation: one node per
field, one edge from each parent to the field derived from it. Fields on a
cycle, and everything downstream of a cycle, are never evaluated. The rest are
evaluated in topological order so a derived field always sees the value its
derived parents computed in the same pass.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Set
import logging

import networkx as nx

from .expression import Clock, DEFAULT_MAX_LENGTH, evaluate_expression
from .form_models import FormField

logger = logging.getLogger(__name__)

PLACEHOLDER = ""


class DerivedStatus:
    """Derived field state constants."""
    OK = "ok"
    ERROR = "error"
    CIRCULAR = "circular"
    MISSING_PARENT = "missing_parent"


@dataclass(frozen=True)
class DerivedState:
    """How a derived field's current value was obtained."""

    status: str = DerivedStatus.OK
    message: str = ""

    @property
    def is_ok(self) -> bool:
        return self.status == DerivedStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status, 'message': self.message}


class FormulaEvaluator(Protocol):
    """Capability that turns a formula and its named inputs into a scalar."""

    def evaluate(self, formula: str, inputs: Mapping[str, Any]) -> Any:
        ...


class SandboxedFormulaEvaluator:
    """Default evaluator backed by the sandboxed expression language."""

    def __init__(self, clock: Optional[Clock] = None, max_length: int = DEFAULT_MAX_LENGTH):
        self.clock = clock
        self.max_length = max_length

    def evaluate(self, formula: str, inputs: Mapping[str, Any]) -> Any:
        return evaluate_expression(formula, inputs, clock=self.clock, max_length=self.max_length)


class DerivationGraph:
    """Dependency graph between ordinary and derived fields."""

    def __init__(self):
        self._graph: nx.DiGraph = nx.DiGraph()
        self._positions: Dict[str, int] = {}
        self._derived: Dict[str, FormField] = {}
        self.missing_parents: Dict[str, List[str]] = {}

    @classmethod
    def from_fields(cls, fields: Sequence[FormField]) -> 'DerivationGraph':
        """
        Build the graph for a field list.

        Parent ids that do not name a field in the list are recorded in
        ``missing_parents`` rather than added as nodes.
        """
        graph = cls()
        for field_def in fields:
            if field_def.id in graph._positions:
                logger.warning(f"Duplicate field id '{field_def.id}' ignored in derivation graph")
                continue
            graph._positions[field_def.id] = len(graph._positions)
            graph._graph.add_node(field_def.id)
            if field_def.is_derived:
                graph._derived[field_def.id] = field_def

        for field_id, field_def in graph._derived.items():
            for parent_id in field_def.parent_ids:
                if parent_id in graph._positions:
                    graph._graph.add_edge(parent_id, field_id)
                else:
                    graph.missing_parents.setdefault(field_id, []).append(parent_id)

        return graph

    @property
    def derived_ids(self) -> List[str]:
        return list(self._derived)

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self._graph)

    def cycle_members(self) -> Set[str]:
        """Fields that depend on themselves, directly or transitively."""
        members: Set[str] = set(nx.nodes_with_selfloops(self._graph))
        for component in nx.strongly_connected_components(self._graph):
            if len(component) > 1:
                members.update(component)
        return members

    def blocked_fields(self) -> Set[str]:
        """Cycle members plus every field downstream of one."""
        members = self.cycle_members()
        blocked = set(members)
        for member in members:
            blocked.update(nx.descendants(self._graph, member))
        return blocked

    def describe_cycles(self) -> List[List[str]]:
        """Each elementary cycle as a list of field ids, in declaration order of its first field."""
        cycles = [list(cycle) for cycle in nx.simple_cycles(self._graph)]
        for cycle in cycles:
            start = min(range(len(cycle)), key=lambda i: self._positions[cycle[i]])
            cycle[:] = cycle[start:] + cycle[:start]
        return sorted(cycles, key=lambda cycle: [self._positions[node] for node in cycle])

    def evaluation_order(self) -> List[str]:
        """
        Derived fields that can be evaluated, parents before children.

        Ties are broken by declaration order so the order is deterministic.
        """
        blocked = self.blocked_fields()
        evaluable = self._graph.subgraph(node for node in self._graph if node not in blocked)
        ordered = nx.lexicographical_topological_sort(evaluable, key=self._positions.__getitem__)
        return [node for node in ordered if node in self._derived]

    def get_field(self, field_id: str) -> FormField:
        return self._derived[field_id]


@dataclass
class DerivationResult:
    """Fresh derived values and states for every derived field."""

    values: Dict[str, Any] = field(default_factory=dict)
    states: Dict[str, DerivedState] = field(default_factory=dict)
    order: List[str] = field(default_factory=list)

    def errors(self) -> Dict[str, DerivedState]:
        return {field_id: state for field_id, state in self.states.items() if not state.is_ok}


def recompute(fields: Sequence[FormField], values: Mapping[str, Any],
              evaluator: Optional[FormulaEvaluator] = None) -> DerivationResult:
    """
    Recompute every derived field from the current ordinary values.

    Pure and deterministic: the same fields and values always produce the
    same result, and the result holds an entry for every derived field, so it
    replaces any previous derived values wholesale.

    Args:
        fields: Field definitions in declaration order
        values: Current values keyed by field id; derived entries are ignored
        evaluator: Formula capability; defaults to the sandboxed evaluator

    Returns:
        DerivationResult with values (placeholder for failures) and states
    """
    evaluator = evaluator or SandboxedFormulaEvaluator()
    graph = DerivationGraph.from_fields(fields)
    result = DerivationResult()

    derived_ids = set(graph.derived_ids)
    current: Dict[str, Any] = {
        field_id: value for field_id, value in values.items() if field_id not in derived_ids
    }

    members = graph.cycle_members()
    blocked = graph.blocked_fields()
    if members:
        logger.warning(f"Circular derivation detected among fields: {sorted(members)}")

    for field_id in graph.derived_ids:
        if field_id in members:
            result.states[field_id] = DerivedState(DerivedStatus.CIRCULAR, "Circular dependency")
            result.values[field_id] = PLACEHOLDER
        elif field_id in blocked:
            result.states[field_id] = DerivedState(
                DerivedStatus.CIRCULAR, "Depends on a field with a circular dependency"
            )
            result.values[field_id] = PLACEHOLDER

    result.order = graph.evaluation_order()
    for field_id in result.order:
        field_def = graph.get_field(field_id)
        missing = graph.missing_parents.get(field_id)
        if missing:
            result.states[field_id] = DerivedState(
                DerivedStatus.MISSING_PARENT, f"Unknown parent field(s): {', '.join(missing)}"
            )
            value = PLACEHOLDER
        else:
            inputs = {parent_id: current.get(parent_id) for parent_id in field_def.parent_ids}
            try:
                value = evaluator.evaluate(field_def.derived.formula, inputs)
                result.states[field_id] = DerivedState(DerivedStatus.OK)
            except Exception as e:
                logger.debug(f"Formula for field '{field_id}' failed: {e}")
                result.states[field_id] = DerivedState(DerivedStatus.ERROR, str(e) or type(e).__name__)
                value = PLACEHOLDER
        current[field_id] = value
        result.values[field_id] = value

    # keep declaration order in the returned maps
    result.values = {field_id: result.values[field_id] for field_id in graph.derived_ids}
    result.states = {field_id: result.states[field_id] for field_id in graph.derived_ids}
    return result
