"""Input resolution: turn a stage's declared input wiring into concrete values.

Stage-output references read the published outputs of an upstream record,
artifact references fetch a promoted artifact, and variable references read
the run bindings. ``${name}`` placeholders are substituted before parsing.
"""

from collections.abc import Mapping
from typing import Any

from stagegate.kernel.domain.run import StageRecord, StageState
from stagegate.kernel.domain.stage import (
    ArtifactRef,
    StageOutputRef,
    StageSpec,
    VariableRef,
    parse_reference,
    substitute,
    substitute_value,
)
from stagegate.kernel.exceptions import InputWiringError, UnboundVariableError
from stagegate.kernel.orchestration.components.artifact_promoter import ArtifactPromoter


class InputResolver:
    """Resolves inputs and params for one stage of one run."""

    def __init__(self, promoter: ArtifactPromoter) -> None:
        self.promoter = promoter

    async def resolve_inputs(
        self,
        stage: StageSpec,
        records: Mapping[str, StageRecord],
        bindings: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Resolve every declared input of *stage*.

        Raises
        ------
        UnboundVariableError
            If a placeholder or ``var:`` reference has no binding
        InputWiringError
            If an upstream stage has not published the referenced output
        ArtifactNotFoundError
            If a referenced artifact identity was never promoted
        """
        resolved: dict[str, Any] = {}
        for name, raw in stage.inputs.items():
            ref = parse_reference(substitute(raw, bindings, stage.id))

            match ref:
                case StageOutputRef(stage_id=upstream, output=output):
                    record = records.get(upstream)
                    if record is None or record.state is not StageState.SUCCEEDED:
                        raise InputWiringError(
                            stage.id, name, f"upstream stage '{upstream}' has not succeeded"
                        )
                    if output not in record.outputs:
                        raise InputWiringError(
                            stage.id, name, f"stage '{upstream}' did not produce '{output}'"
                        )
                    resolved[name] = record.outputs[output]
                case ArtifactRef(identity=identity):
                    resolved[name] = await self.promoter.fetch(identity)
                case VariableRef(name=var):
                    if var not in bindings:
                        raise UnboundVariableError([var], stage.id)
                    resolved[name] = bindings[var]

        return resolved

    @staticmethod
    def resolve_params(stage: StageSpec, bindings: Mapping[str, Any]) -> dict[str, Any]:
        """Substitute placeholders in the stage's params."""
        return substitute_value(dict(stage.params), bindings, stage.id)

    @staticmethod
    def artifact_identity(stage: StageSpec, bindings: Mapping[str, Any]) -> str | None:
        """Evaluate the stage's artifact identity expression, if it has one."""
        if stage.artifact is None:
            return None
        return substitute(stage.artifact, bindings, stage.id)
