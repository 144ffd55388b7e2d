"""StageGraph: validated dependency graph and level resolution.

The graph stores StageSpecs by id, validates that every dependency exists,
that the relation is acyclic and that stage-output input references are wired
to declared upstream outputs, and resolves the stages into levels that can run
concurrently.
"""

from collections import defaultdict
from collections.abc import Iterator, Mapping
from enum import Enum, auto

from stagegate.kernel.domain.stage import StageSpec, stage_reference
from stagegate.kernel.exceptions import (
    CycleError,
    DanglingReferenceError,
    DuplicateStageError,
    InputWiringError,
    ValidationError,
)

_EMPTY_SET: frozenset[str] = frozenset()


class Color(Enum):
    """Colors for DFS cycle detection."""

    WHITE = auto()  # Unvisited
    GRAY = auto()  # On the current DFS path
    BLACK = auto()  # Fully explored


class StageGraph:
    """A directed acyclic graph of StageSpecs.

    Provides:
    - Stage management with duplicate detection
    - Dependency and input wiring validation
    - Resolution into maximal parallel levels
    - Transitive dependent/ancestor queries used for failure isolation
    """

    def __init__(self, stages: list[StageSpec] | None = None) -> None:
        self.stages: dict[str, StageSpec] = {}
        self._forward_edges: defaultdict[str, set[str]] = defaultdict(set)  # stage -> dependents
        self._levels_cache: list[list[str]] | None = None
        self._validated = False

        if stages:
            self.add_many(*stages)

    @staticmethod
    def detect_cycle(graph: Mapping[str, set[str] | frozenset[str]]) -> list[str] | None:
        """Find one cycle in a dependency mapping using three-color DFS.

        Parameters
        ----------
        graph : Mapping[str, set[str] | frozenset[str]]
            Stage id -> ids it depends on

        Returns
        -------
        list[str] | None
            The cycle path with its first element repeated at the end, or None

        Examples
        --------
        >>> StageGraph.detect_cycle({"a": {"b"}, "b": {"c"}, "c": {"a"}})
        ['a', 'b', 'c', 'a']
        >>> StageGraph.detect_cycle({"a": {"b"}, "b": set()}) is None
        True
        """
        colors = dict.fromkeys(graph, Color.WHITE)

        def dfs(node: str, path: list[str]) -> list[str] | None:
            if colors[node] == Color.GRAY:
                return path[path.index(node) :] + [node]
            if colors[node] == Color.BLACK:
                return None

            colors[node] = Color.GRAY
            path.append(node)
            for dep in sorted(graph.get(node, _EMPTY_SET)):
                if dep in colors and (cycle := dfs(dep, path)):
                    return cycle
            path.pop()
            colors[node] = Color.BLACK
            return None

        for node in sorted(graph):
            if colors[node] == Color.WHITE and (cycle := dfs(node, [])):
                return cycle
        return None

    def add(self, stage: StageSpec) -> "StageGraph":
        """Add a stage. Validation of references is deferred to :meth:`validate`.

        Raises
        ------
        DuplicateStageError
            If a stage with the same id already exists
        """
        if stage.id in self.stages:
            raise DuplicateStageError(stage.id)

        self.stages[stage.id] = stage
        self._forward_edges[stage.id]  # ensure key exists
        for dep in stage.depends_on:
            self._forward_edges[dep].add(stage.id)

        self._levels_cache = None
        self._validated = False
        return self

    def add_many(self, *stages: StageSpec) -> "StageGraph":
        """Add several stages; nothing is added if any id is a duplicate."""
        seen: set[str] = set()
        for stage in stages:
            if stage.id in self.stages or stage.id in seen:
                raise DuplicateStageError(stage.id)
            seen.add(stage.id)
        for stage in stages:
            self.add(stage)
        return self

    def get_dependencies(self, stage_id: str) -> frozenset[str]:
        if stage_id not in self.stages:
            raise KeyError(f"Stage '{stage_id}' not found in graph")
        return self.stages[stage_id].depends_on

    def get_dependents(self, stage_id: str) -> set[str]:
        if stage_id not in self.stages:
            raise KeyError(f"Stage '{stage_id}' not found in graph")
        return set(self._forward_edges.get(stage_id, _EMPTY_SET))

    def ancestors(self, stage_id: str) -> set[str]:
        """All stages *stage_id* transitively depends on."""
        seen: set[str] = set()
        stack = list(self.get_dependencies(stage_id))
        while stack:
            current = stack.pop()
            if current in seen or current not in self.stages:
                continue
            seen.add(current)
            stack.extend(self.stages[current].depends_on)
        return seen

    def transitive_dependents(self, stage_id: str) -> set[str]:
        """All stages that transitively depend on *stage_id*."""
        seen: set[str] = set()
        stack = list(self.get_dependents(stage_id))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._forward_edges.get(current, _EMPTY_SET))
        return seen

    def validate(self) -> None:
        """Validate the graph structure (cached until the graph changes).

        Raises
        ------
        DanglingReferenceError
            If a stage depends on, or takes input from, an unknown stage
        CycleError
            If the dependency relation has a cycle
        InputWiringError
            If a stage-output input does not point at a declared output of an upstream stage
        """
        if self._validated:
            return

        for stage_id in sorted(self.stages):
            stage = self.stages[stage_id]
            for dep in sorted(stage.depends_on):
                if dep not in self.stages:
                    raise DanglingReferenceError(stage_id, dep)

        if cycle := self.detect_cycle({sid: s.depends_on for sid, s in self.stages.items()}):
            raise CycleError(cycle)

        for stage_id in sorted(self.stages):
            self._validate_inputs(self.stages[stage_id])

        self._validated = True

    def _validate_inputs(self, stage: StageSpec) -> None:
        upstream: set[str] | None = None
        for name, reference in sorted(stage.inputs.items()):
            try:
                ref = stage_reference(reference)
            except ValidationError as e:
                raise InputWiringError(stage.id, name, str(e)) from e
            if ref is None:
                continue
            if ref.stage_id not in self.stages:
                raise DanglingReferenceError(stage.id, ref.stage_id)
            if upstream is None:
                upstream = self.ancestors(stage.id)
            if ref.stage_id not in upstream:
                raise InputWiringError(
                    stage.id, name, f"'{ref.stage_id}' is not an upstream dependency"
                )
            producer = self.stages[ref.stage_id]
            if ref.output not in producer.outputs and not (
                producer.artifact and ref.output == "artifact_id"
            ):
                raise InputWiringError(
                    stage.id, name, f"'{ref.stage_id}' does not declare output '{ref.output}'"
                )

    def levels(self) -> list[list[str]]:
        """Resolve the graph into ordered levels of independent stages.

        Each level is the maximal set of stages whose dependencies all lie in
        earlier levels; ids within a level are sorted for determinism.

        Returns
        -------
        list[list[str]]
            Levels in execution order

        Examples
        --------
            # For: a -> b -> d, a -> c -> d
            # Returns: [["a"], ["b", "c"], ["d"]]
        """
        self.validate()
        if self._levels_cache is not None:
            return self._levels_cache

        in_degrees = {sid: len(stage.depends_on) for sid, stage in self.stages.items()}
        levels: list[list[str]] = []

        while in_degrees:
            current = sorted(sid for sid, degree in in_degrees.items() if degree == 0)
            if not current:
                # validate() rules this out; kept as a guard for subclass misuse
                raise CycleError(sorted(in_degrees))
            levels.append(current)
            for sid in current:
                del in_degrees[sid]
                for dependent in self._forward_edges.get(sid, _EMPTY_SET):
                    if dependent in in_degrees:
                        in_degrees[dependent] -= 1

        self._levels_cache = levels
        return levels

    def required_bindings(self) -> set[str]:
        """Binding names referenced by any stage in the graph."""
        return set().union(*(stage.required_bindings() for stage in self.stages.values()))

    def __len__(self) -> int:
        return len(self.stages)

    def __bool__(self) -> bool:
        return bool(self.stages)

    def __contains__(self, stage_id: str) -> bool:
        return stage_id in self.stages

    def __iter__(self) -> Iterator[StageSpec]:
        return iter(self.stages.values())

    def __getitem__(self, stage_id: str) -> StageSpec:
        return self.stages[stage_id]

    def __repr__(self) -> str:
        return f"StageGraph(stages={len(self.stages)})"
