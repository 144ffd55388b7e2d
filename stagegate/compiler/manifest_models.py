"""Pydantic models for the declarative manifest documents.

These validate the raw YAML shape only; turning declarations into kernel
StageSpecs (resolving actions and probes, parsing durations) is the
builder's job.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stagegate.kernel.domain.stage import StageKind

Duration = float | int | str


class Metadata(BaseModel):
    """``metadata`` block shared by every manifest kind."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    namespace: str | None = None
    description: str | None = None


class ServiceDeclaration(BaseModel):
    """``service`` block of a stage.

    ``probe`` is either ``"package.module:callable"`` or one of
    ``{http: url}``, ``{tcp: "host:port"}``, ``{command: "..."}``.
    """

    model_config = ConfigDict(extra="forbid")

    probe: str | dict[str, Any]
    interval: Duration | None = None
    timeout: Duration | None = None
    max_attempts: int | None = Field(None, ge=1)

    @field_validator("probe")
    @classmethod
    def validate_probe(cls, value: str | dict[str, Any]) -> str | dict[str, Any]:
        if isinstance(value, dict):
            kinds = {"http", "tcp", "command"} & set(value)
            if len(kinds) != 1:
                raise ValueError("probe must declare exactly one of 'http', 'tcp' or 'command'")
        return value


class StageDeclaration(BaseModel):
    """One entry of ``spec.stages``."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    kind: StageKind
    action: str | dict[str, Any] | None = None
    depends_on: list[str] = Field(default_factory=list)
    inputs: dict[str, str] = Field(default_factory=dict)
    outputs: list[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)
    service: ServiceDeclaration | None = None
    artifact: str | None = None
    reuse_outputs: bool | None = None
    timeout: Duration | None = None

    @field_validator("action")
    @classmethod
    def validate_action(cls, value: str | dict[str, Any] | None) -> str | dict[str, Any] | None:
        if isinstance(value, dict) and not isinstance(value.get("command"), str):
            raise ValueError("action mapping must have a 'command' string")
        return value


class PipelineSpec(BaseModel):
    """``spec`` of a ``kind: Pipeline`` document."""

    model_config = ConfigDict(extra="forbid")

    stages: list[StageDeclaration] = Field(min_length=1)


class PipelineManifest(BaseModel):
    """``kind: Pipeline`` document."""

    api_version: str = Field("v1", alias="apiVersion")
    kind: str = "Pipeline"
    metadata: Metadata = Field(default_factory=Metadata)
    spec: PipelineSpec


class EnvironmentSpec(BaseModel):
    """``spec`` of a ``kind: Environment`` document."""

    model_config = ConfigDict(extra="forbid")

    bindings: dict[str, Any] = Field(default_factory=dict)


class EnvironmentManifest(BaseModel):
    """``kind: Environment`` document: a named binding set."""

    api_version: str = Field("v1", alias="apiVersion")
    kind: str = "Environment"
    metadata: Metadata
    spec: EnvironmentSpec = Field(default_factory=EnvironmentSpec)

    @field_validator("metadata")
    @classmethod
    def require_name(cls, value: Metadata) -> Metadata:
        if not value.name:
            raise ValueError("Environment manifests need metadata.name")
        return value
