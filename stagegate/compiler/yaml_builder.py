"""YAML Pipeline Builder: manifests to a StageGraph plus bindings.

The builder:
1. Parses the (multi-document) YAML
2. Validates each document's manifest format
3. Selects the ``kind: Pipeline`` document and the requested ``kind: Environment``
4. Resolves actions and probes, parses durations, and builds StageSpecs
5. Returns a StageGraph (not yet validated; the orchestrator validates at plan time)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from stagegate.compiler.durations import parse_duration
from stagegate.compiler.manifest_models import (
    EnvironmentManifest,
    PipelineManifest,
    ServiceDeclaration,
    StageDeclaration,
)
from stagegate.compiler.references import resolve_callable
from stagegate.drivers.actions import CommandAction
from stagegate.drivers.probes import CommandProbe, HttpProbe, TcpProbe
from stagegate.kernel.domain.graph import StageGraph
from stagegate.kernel.domain.stage import ServiceSpec, StageSpec
from stagegate.kernel.exceptions import ManifestError, ResolveError, ValidationError
from stagegate.kernel.logging import get_logger
from stagegate.kernel.orchestration.models import OrchestratorConfig

logger = get_logger(__name__)

PIPELINE_KIND = "Pipeline"
ENVIRONMENT_KIND = "Environment"
CONFIG_KIND = "Config"
_KNOWN_KINDS = (PIPELINE_KIND, ENVIRONMENT_KIND, CONFIG_KIND)


@dataclass(frozen=True, slots=True)
class Pipeline:
    """A compiled manifest.

    Attributes
    ----------
    name : str
        ``metadata.name`` of the Pipeline document
    graph : StageGraph
        The declared stages
    environment : str | None
        Selected environment name
    bindings : Mapping[str, Any]
        Bindings of the selected environment merged with overrides
    environments : tuple[str, ...]
        Every environment declared in the manifest
    """

    name: str
    graph: StageGraph
    environment: str | None = None
    bindings: Mapping[str, Any] = field(default_factory=dict)
    environments: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "bindings", MappingProxyType(dict(self.bindings)))


class YamlPipelineBuilder:
    """Builds Pipelines from manifest YAML.

    Parameters
    ----------
    defaults : OrchestratorConfig | None
        Supplies probe interval, timeout and attempts for services that omit them

    Examples
    --------
    Example usage::

        pipeline = YamlPipelineBuilder().build_from_yaml_file("release.yaml", environment="staging")
        result = await Orchestrator().apply(pipeline.graph, pipeline.bindings)
    """

    def __init__(self, defaults: OrchestratorConfig | None = None) -> None:
        self.defaults = defaults or OrchestratorConfig()

    # --- Public API ---

    def build_from_yaml_file(
        self,
        yaml_path: str | Path,
        environment: str | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> Pipeline:
        """Build from a YAML file.

        Raises
        ------
        ManifestError
            If the file is missing or any document is invalid
        """
        path = Path(yaml_path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestError(f"Cannot read manifest '{path}': {e}") from e
        return self.build_from_yaml_string(content, environment=environment, overrides=overrides)

    def build_from_yaml_string(
        self,
        yaml_content: str,
        environment: str | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> Pipeline:
        """Build a Pipeline from YAML text.

        Parameters
        ----------
        yaml_content : str
            One or more ``---`` separated manifest documents
        environment : str | None
            Name of the ``kind: Environment`` document whose bindings to use
        overrides : Mapping[str, Any] | None
            Bindings that take precedence over the environment's

        Raises
        ------
        ManifestError
            If the YAML or a manifest is invalid, an action or probe cannot be
            resolved, or *environment* is not declared
        """
        documents = self._parse_yaml(yaml_content)
        for doc in documents:
            self._validate_manifest_format(doc)

        pipeline_doc = self._select_pipeline(documents)
        environments = self._parse_environments(documents)
        bindings = self._select_environment(environments, environment)
        bindings.update(overrides or {})

        manifest = self._validate(PipelineManifest, pipeline_doc)
        stages = [self._build_stage(decl) for decl in manifest.spec.stages]
        graph = StageGraph(stages)

        name = manifest.metadata.name or "pipeline"
        logger.info(
            "Built pipeline '{name}' with {stages} stages (environment: {env})",
            name=name,
            stages=len(graph),
            env=environment or "-",
        )
        return Pipeline(
            name=name,
            graph=graph,
            environment=environment,
            bindings=bindings,
            environments=tuple(environments),
        )

    # --- Documents ---

    @staticmethod
    def _parse_yaml(yaml_content: str) -> list[dict[str, Any]]:
        try:
            if "---" in yaml_content:
                documents = [doc for doc in yaml.safe_load_all(yaml_content) if doc is not None]
            else:
                documents = [_parse_yaml_cached(yaml_content)]
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML: {e}") from e

        for doc in documents:
            if not isinstance(doc, dict):
                raise ManifestError(
                    f"YAML document must be a mapping, got {type(doc).__name__}"
                )
        return documents

    @staticmethod
    def _validate_manifest_format(config: dict[str, Any]) -> None:
        """Validate declarative manifest format."""
        if "kind" not in config:
            raise ManifestError(
                "YAML must use declarative manifest format with 'kind' field. "
                "Example:\n"
                "apiVersion: v1\n"
                "kind: Pipeline\n"
                "metadata:\n"
                "  name: release\n"
                "spec:\n"
                "  stages: [...]"
            )
        kind = config["kind"]
        if kind not in _KNOWN_KINDS:
            raise ManifestError(
                f"Unknown manifest kind '{kind}'. Expected one of: {', '.join(_KNOWN_KINDS)}"
            )
        if kind in (PIPELINE_KIND, ENVIRONMENT_KIND) and "metadata" not in config:
            raise ManifestError(f"{kind} manifest must have 'metadata' field")
        if kind == PIPELINE_KIND and "spec" not in config:
            raise ManifestError("Pipeline manifest must have 'spec' field")

    @staticmethod
    def _select_pipeline(documents: list[dict[str, Any]]) -> dict[str, Any]:
        pipelines = [doc for doc in documents if doc["kind"] == PIPELINE_KIND]
        if not pipelines:
            raise ManifestError("No 'kind: Pipeline' document found")
        if len(pipelines) > 1:
            raise ManifestError(
                f"Expected exactly one 'kind: Pipeline' document, found {len(pipelines)}"
            )
        return pipelines[0]

    def _parse_environments(self, documents: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
        environments: dict[str, dict[str, Any]] = {}
        for doc in documents:
            if doc["kind"] != ENVIRONMENT_KIND:
                continue
            manifest = self._validate(EnvironmentManifest, doc)
            name = manifest.metadata.name or ""
            if name in environments:
                raise ManifestError(f"Environment '{name}' is declared more than once")
            environments[name] = dict(manifest.spec.bindings)
        return environments

    @staticmethod
    def _select_environment(
        environments: dict[str, dict[str, Any]], environment: str | None
    ) -> dict[str, Any]:
        """Return a copy of the bindings of *environment*."""
        if environment is None:
            if environments:
                logger.debug(
                    "No environment selected; available: {envs}",
                    envs=", ".join(sorted(environments)),
                )
            return {}
        if environment not in environments:
            available = ", ".join(sorted(environments)) or "none"
            raise ManifestError(
                f"Environment '{environment}' not found. Available environments: {available}"
            )
        logger.debug("Selected environment '{}'", environment)
        return dict(environments[environment])

    @staticmethod
    def _validate(model: type[Any], doc: dict[str, Any]) -> Any:
        try:
            return model.model_validate(doc)
        except PydanticValidationError as e:
            errors = "\n".join(
                f"  {'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ManifestError(f"Invalid {doc.get('kind')} manifest:\n{errors}") from e

    # --- Stages ---

    def _build_stage(self, decl: StageDeclaration) -> StageSpec:
        try:
            return StageSpec(
                id=decl.id,
                kind=decl.kind,
                action=self._build_action(decl.action),
                depends_on=frozenset(decl.depends_on),
                inputs=decl.inputs,
                outputs=tuple(decl.outputs),
                params=decl.params,
                service=self._build_service(decl.service) if decl.service else None,
                artifact=decl.artifact,
                reuse_outputs=decl.reuse_outputs,
                timeout=(
                    parse_duration(decl.timeout, f"{decl.id}.timeout")
                    if decl.timeout is not None
                    else None
                ),
            )
        except (ValidationError, ResolveError) as e:
            raise ManifestError(f"Stage '{decl.id}': {e}") from e

    @staticmethod
    def _build_action(action: str | dict[str, Any] | None) -> Any:
        if action is None:
            return None
        if isinstance(action, str):
            return resolve_callable(action)
        return CommandAction(action["command"], cwd=action.get("cwd"), env=action.get("env"))

    def _build_service(self, decl: ServiceDeclaration) -> ServiceSpec:
        return ServiceSpec(
            probe=self._build_probe(decl.probe),
            interval=(
                parse_duration(decl.interval, "service.interval")
                if decl.interval is not None
                else self.defaults.probe_interval
            ),
            timeout=(
                parse_duration(decl.timeout, "service.timeout")
                if decl.timeout is not None
                else self.defaults.probe_timeout
            ),
            max_attempts=decl.max_attempts or self.defaults.probe_max_attempts,
        )

    @staticmethod
    def _build_probe(probe: str | dict[str, Any]) -> Any:
        if isinstance(probe, str):
            return resolve_callable(probe)
        if "http" in probe:
            expected = probe.get("expected_status")
            if isinstance(expected, int):
                expected = (expected,)
            return HttpProbe(
                probe["http"],
                method=probe.get("method", "GET"),
                expected_status=tuple(expected) if expected else None,
                headers=probe.get("headers"),
            )
        if "tcp" in probe:
            return TcpProbe.from_address(str(probe["tcp"]))
        return CommandProbe(probe["command"], cwd=probe.get("cwd"), env=probe.get("env"))


# ============================================================================
# Utilities
# ============================================================================


@lru_cache(maxsize=32)
def _parse_yaml_cached(yaml_content: str) -> Any:
    """Cached YAML parsing for single-document manifests."""
    return yaml.safe_load(yaml_content)
