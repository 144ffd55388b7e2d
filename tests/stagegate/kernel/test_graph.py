"""Tests for StageGraph validation and level resolution."""

import pytest

from stagegate.kernel.domain import StageGraph, StageKind, StageSpec
from stagegate.kernel.exceptions import (
    CycleError,
    DanglingReferenceError,
    DuplicateStageError,
    InputWiringError,
)


def stage(stage_id: str, *deps: str, **kwargs) -> StageSpec:
    kind = kwargs.pop("kind", StageKind.TEST)
    return StageSpec(stage_id, kind, depends_on=frozenset(deps), **kwargs)


class TestLevels:
    """Level resolution."""

    def test_diamond(self) -> None:
        graph = StageGraph([stage("a"), stage("b", "a"), stage("c", "a"), stage("d", "b", "c")])
        assert graph.levels() == [["a"], ["b", "c"], ["d"]]

    def test_every_dependency_in_an_earlier_level(self) -> None:
        graph = StageGraph([
            stage("db"),
            stage("cache"),
            stage("build"),
            stage("migrate", "db"),
            stage("deploy", "migrate", "cache", "build"),
            stage("verify", "deploy"),
        ])
        position = {sid: i for i, level in enumerate(graph.levels()) for sid in level}
        for spec in graph:
            for dep in spec.depends_on:
                assert position[dep] < position[spec.id]

    def test_levels_are_maximal_and_sorted(self) -> None:
        graph = StageGraph([stage("z"), stage("m"), stage("a"), stage("after", "z")])
        assert graph.levels() == [["a", "m", "z"], ["after"]]

    def test_deterministic_across_insertion_order(self) -> None:
        specs = [stage("c", "a"), stage("a"), stage("b", "a"), stage("d", "c", "b")]
        assert StageGraph(specs).levels() == StageGraph(list(reversed(specs))).levels()

    def test_single_stage(self) -> None:
        assert StageGraph([stage("only")]).levels() == [["only"]]

    def test_empty_graph(self) -> None:
        assert StageGraph().levels() == []

    def test_cache_invalidated_on_add(self) -> None:
        graph = StageGraph([stage("a")])
        assert graph.levels() == [["a"]]
        graph.add(stage("b", "a"))
        assert graph.levels() == [["a"], ["b"]]


class TestValidation:
    """Structural errors detected before dispatch."""

    def test_cycle(self) -> None:
        graph = StageGraph([stage("a", "c"), stage("b", "a"), stage("c", "b")])
        with pytest.raises(CycleError) as exc_info:
            graph.validate()
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]
        assert set(exc_info.value.cycle) == {"a", "b", "c"}

    def test_self_dependency_is_a_cycle(self) -> None:
        with pytest.raises(CycleError):
            StageGraph([stage("a", "a")]).levels()

    def test_dangling_dependency(self) -> None:
        with pytest.raises(DanglingReferenceError) as exc_info:
            StageGraph([stage("deploy", "build")]).validate()
        assert exc_info.value.missing == "build"
        assert "deploy" in str(exc_info.value)

    def test_duplicate_id(self) -> None:
        graph = StageGraph([stage("a")])
        with pytest.raises(DuplicateStageError):
            graph.add(stage("a"))

    def test_add_many_is_atomic(self) -> None:
        graph = StageGraph([stage("a")])
        with pytest.raises(DuplicateStageError):
            graph.add_many(stage("b"), stage("a"))
        assert "b" not in graph

    def test_input_from_non_upstream_stage(self) -> None:
        graph = StageGraph([
            stage("db", outputs=("url",)),
            stage("app", inputs={"db_url": "db.url"}),
        ])
        with pytest.raises(InputWiringError, match="not an upstream dependency"):
            graph.validate()

    def test_input_of_undeclared_output(self) -> None:
        graph = StageGraph([
            stage("db", outputs=("url",)),
            stage("app", "db", inputs={"db_url": "db.password"}),
        ])
        with pytest.raises(InputWiringError, match="does not declare output 'password'"):
            graph.validate()

    def test_input_from_transitive_ancestor(self) -> None:
        graph = StageGraph([
            stage("db", outputs=("url",)),
            stage("migrate", "db"),
            stage("app", "migrate", inputs={"db_url": "db.url"}),
        ])
        graph.validate()

    def test_input_from_unknown_stage(self) -> None:
        graph = StageGraph([stage("app", inputs={"x": "ghost.value"})])
        with pytest.raises(DanglingReferenceError):
            graph.validate()

    def test_artifact_id_is_an_implicit_build_output(self) -> None:
        graph = StageGraph([
            stage("build", kind=StageKind.BUILD, artifact="app-${revision}"),
            stage("deploy", "build", inputs={"image": "build.artifact_id"}),
        ])
        graph.validate()

    def test_malformed_reference(self) -> None:
        graph = StageGraph([stage("app", inputs={"x": "no-dot"})])
        with pytest.raises(InputWiringError):
            graph.validate()

    def test_artifact_and_variable_references_need_no_wiring(self) -> None:
        graph = StageGraph([
            stage("verify", inputs={"image": "artifact:app-${revision}", "region": "var:region"}),
        ])
        graph.validate()
        assert graph.required_bindings() == {"revision", "region"}


class TestQueries:
    """Dependency queries used for failure isolation."""

    @pytest.fixture
    def graph(self) -> StageGraph:
        return StageGraph(
            [stage("a"), stage("b"), stage("c", "a"), stage("d", "c"), stage("e", "b")]
        )

    def test_transitive_dependents(self, graph: StageGraph) -> None:
        assert graph.transitive_dependents("a") == {"c", "d"}
        assert graph.transitive_dependents("b") == {"e"}
        assert graph.transitive_dependents("d") == set()

    def test_ancestors(self, graph: StageGraph) -> None:
        assert graph.ancestors("d") == {"a", "c"}

    def test_unknown_stage(self, graph: StageGraph) -> None:
        with pytest.raises(KeyError):
            graph.get_dependencies("missing")

    def test_detect_cycle_helper(self) -> None:
        assert StageGraph.detect_cycle({"a": {"b"}, "b": set()}) is None
        assert StageGraph.detect_cycle({"a": {"b"}, "b": {"a"}}) == ["a", "b", "a"]
