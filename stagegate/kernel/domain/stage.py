"""Stage primitives: StageSpec, ServiceSpec and input references.

A StageSpec is the immutable declaration of one unit of work. Stages are
wired together through ``depends_on`` and through named input references
that point at another stage's outputs, at a promoted artifact, or at a run
binding.
"""

import re
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from stagegate.kernel.exceptions import UnboundVariableError, ValidationError

# ${name} placeholders substituted from run bindings
PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.-]*)\}")

ARTIFACT_PREFIX = "artifact:"
VARIABLE_PREFIX = "var:"


class StageKind(StrEnum):
    """Kind of work a stage performs."""

    PROVISION = "provision"
    BUILD = "build"
    TEST = "test"
    DEPLOY = "deploy"
    VERIFY = "verify"


@dataclass(frozen=True, slots=True)
class ServiceSpec:
    """Readiness contract for a stage that keeps running after it executes.

    Attributes
    ----------
    probe : Callable[[], Any]
        Boolean-returning check (sync or async). Exceptions count as a failed attempt.
    interval : float
        Seconds to wait between attempts
    timeout : float
        Upper bound in seconds for a single attempt
    max_attempts : int
        Attempts before the service is declared Failed
    """

    probe: Callable[[], Any]
    interval: float = 10.0
    timeout: float = 5.0
    max_attempts: int = 6

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValidationError("interval", "must be >= 0", self.interval)
        if self.timeout <= 0:
            raise ValidationError("timeout", "must be > 0", self.timeout)
        if self.max_attempts < 1:
            raise ValidationError("max_attempts", "must be >= 1", self.max_attempts)

    @property
    def budget(self) -> float:
        """Hard upper bound, in seconds, for a complete watch."""
        return self.max_attempts * (self.interval + self.timeout)


# ============================================================================
# Input references
# ============================================================================


@dataclass(frozen=True, slots=True)
class StageOutputRef:
    """``<stage_id>.<output_name>``"""

    stage_id: str
    output: str


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """``artifact:<identity>``"""

    identity: str


@dataclass(frozen=True, slots=True)
class VariableRef:
    """``var:<binding_name>``"""

    name: str


InputRef = StageOutputRef | ArtifactRef | VariableRef


def placeholders(text: str) -> set[str]:
    """Return the binding names referenced by ``${name}`` placeholders in *text*."""
    return set(PLACEHOLDER_PATTERN.findall(text))


def substitute(text: str, bindings: Mapping[str, Any], stage_id: str | None = None) -> str:
    """Replace ``${name}`` placeholders with values from *bindings*.

    Raises
    ------
    UnboundVariableError
        If any placeholder has no binding
    """
    missing = [name for name in placeholders(text) if name not in bindings]
    if missing:
        raise UnboundVariableError(missing, stage_id)
    return PLACEHOLDER_PATTERN.sub(lambda m: str(bindings[m.group(1)]), text)


def substitute_value(value: Any, bindings: Mapping[str, Any], stage_id: str | None = None) -> Any:
    """Recursively substitute placeholders inside strings, lists and mappings."""
    if isinstance(value, str):
        # A value that is exactly one placeholder keeps the binding's type
        if (match := PLACEHOLDER_PATTERN.fullmatch(value)) and match.group(1) in bindings:
            return bindings[match.group(1)]
        return substitute(value, bindings, stage_id)
    if isinstance(value, Mapping):
        return {k: substitute_value(v, bindings, stage_id) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [substitute_value(v, bindings, stage_id) for v in value]
    return value


def collect_placeholders(value: Any) -> set[str]:
    """Recursively collect placeholder names from a nested value."""
    if isinstance(value, str):
        return placeholders(value)
    if isinstance(value, Mapping):
        return set().union(*(collect_placeholders(v) for v in value.values()))
    if isinstance(value, list | tuple):
        return set().union(*(collect_placeholders(v) for v in value))
    return set()


def parse_reference(reference: str) -> InputRef:
    """Parse an already-substituted input reference.

    Examples
    --------
    >>> parse_reference("db.url")
    StageOutputRef(stage_id='db', output='url')
    >>> parse_reference("artifact:app-abc123")
    ArtifactRef(identity='app-abc123')
    >>> parse_reference("var:region")
    VariableRef(name='region')
    """
    if reference.startswith(ARTIFACT_PREFIX):
        identity = reference.removeprefix(ARTIFACT_PREFIX).strip()
        if not identity:
            raise ValidationError("input", "artifact reference needs an identity", reference)
        return ArtifactRef(identity)
    if reference.startswith(VARIABLE_PREFIX):
        name = reference.removeprefix(VARIABLE_PREFIX).strip()
        if not name:
            raise ValidationError("input", "variable reference needs a name", reference)
        return VariableRef(name)
    stage_id, sep, output = reference.partition(".")
    if not sep or not stage_id or not output:
        raise ValidationError(
            "input",
            "expected '<stage_id>.<output>', 'artifact:<identity>' or 'var:<name>'",
            reference,
        )
    return StageOutputRef(stage_id, output)


def stage_reference(reference: str) -> StageOutputRef | None:
    """Return the stage-output reference in *reference*, if it is one.

    Stage references may not contain placeholders in the stage id part, so this
    works on unsubstituted declarations at plan time.
    """
    if reference.startswith((ARTIFACT_PREFIX, VARIABLE_PREFIX)):
        return None
    parsed = parse_reference(reference)
    return parsed if isinstance(parsed, StageOutputRef) else None


# ============================================================================
# StageSpec
# ============================================================================


@dataclass(frozen=True, slots=True)
class StageSpec:
    """Immutable declaration of a stage.

    Attributes
    ----------
    id : str
        Unique id within the graph
    kind : StageKind
        provision, build, test, deploy or verify
    action : Callable[..., Any] | None
        External action; receives a ``StageContext`` and returns a mapping of outputs.
        ``None`` is a no-op stage that produces no outputs.
    depends_on : frozenset[str]
        Ids of stages that must be ready first
    inputs : Mapping[str, str]
        Named input references (``stage.output``, ``artifact:<expr>``, ``var:<name>``)
    outputs : tuple[str, ...]
        Names the action must produce on success
    params : Mapping[str, Any]
        Free-form action parameters, ``${name}`` substituted from bindings
    service : ServiceSpec | None
        Present for long-running stages gated on readiness
    artifact : str | None
        Identity expression under which a build output is promoted
    reuse_outputs : bool | None
        Short-circuit when an identical apply already succeeded. ``None`` means
        "default for the kind" (on for provision stages only)
    timeout : float | None
        Per-stage action timeout in seconds
    """

    id: str
    kind: StageKind
    action: Callable[..., Any] | None = None
    depends_on: frozenset[str] = field(default_factory=frozenset)
    inputs: Mapping[str, str] = field(default_factory=dict)
    outputs: tuple[str, ...] = ()
    params: Mapping[str, Any] = field(default_factory=dict)
    service: ServiceSpec | None = None
    artifact: str | None = None
    reuse_outputs: bool | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValidationError("id", "must be a non-empty string", self.id)
        if "." in self.id:
            raise ValidationError("id", "must not contain '.'", self.id)
        object.__setattr__(self, "id", sys.intern(self.id))
        object.__setattr__(self, "kind", StageKind(self.kind))
        object.__setattr__(self, "depends_on", frozenset(sys.intern(d) for d in self.depends_on))
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        if self.artifact is not None and self.kind is not StageKind.BUILD:
            raise ValidationError("artifact", "only build stages promote artifacts", self.id)

    @property
    def is_service(self) -> bool:
        return self.service is not None

    @property
    def reuses_outputs(self) -> bool:
        """Whether idempotent apply is enabled for this stage."""
        if self.reuse_outputs is None:
            return self.kind is StageKind.PROVISION
        return self.reuse_outputs

    def required_bindings(self) -> set[str]:
        """Binding names referenced anywhere in this declaration."""
        names = collect_placeholders(dict(self.inputs)) | collect_placeholders(dict(self.params))
        names |= {
            ref.removeprefix(VARIABLE_PREFIX).strip()
            for ref in self.inputs.values()
            if ref.startswith(VARIABLE_PREFIX) and not placeholders(ref)
        }
        if self.artifact:
            names |= placeholders(self.artifact)
        return names

    def after(self, *stage_ids: str) -> "StageSpec":
        """Return a copy that also depends on *stage_ids*.

        Examples
        --------
            migrate = StageSpec("migrate", StageKind.DEPLOY, run_migrations).after("db")
        """
        return replace(self, depends_on=self.depends_on | frozenset(stage_ids))

    def __rshift__(self, other: "StageSpec") -> "StageSpec":
        """``a >> b`` returns *b* depending on *a*."""
        if not isinstance(other, StageSpec):
            return NotImplemented
        return other.after(self.id)

    def __repr__(self) -> str:
        deps = f", depends_on={sorted(self.depends_on)}" if self.depends_on else ""
        service = ", service" if self.service else ""
        return f"StageSpec('{self.id}', {self.kind.value}{deps}{service})"
