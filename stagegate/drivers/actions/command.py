"""Shell command stage action.

The command string may reference run bindings (``${revision}``), resolved
inputs (``${inputs.image}``) and params (``${params.replicas}``). Inputs are
also exported to the child as ``STAGEGATE_INPUT_<NAME>`` environment
variables. Lines of standard output of the form ``::output name=value``
publish stage outputs; ``stdout`` and ``returncode`` are always published.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from stagegate.kernel.domain.artifact import Artifact
from stagegate.kernel.domain.stage import substitute
from stagegate.kernel.exceptions import CommandFailedError, RunCancelledError
from stagegate.kernel.logging import get_logger

if TYPE_CHECKING:
    from stagegate.kernel.orchestration.models import StageContext

logger = get_logger(__name__)

OUTPUT_LINE = re.compile(r"^::output\s+([A-Za-z_][A-Za-z0-9_-]*)=(.*)$")


def _as_text(value: Any) -> str:
    if isinstance(value, Artifact):
        return value.identity
    return str(value)


def parse_outputs(stdout: str) -> dict[str, str]:
    """Extract ``::output name=value`` lines.

    Examples
    --------
    >>> parse_outputs("building\\n::output image=app:abc\\n")
    {'image': 'app:abc'}
    """
    outputs: dict[str, str] = {}
    for line in stdout.splitlines():
        if match := OUTPUT_LINE.match(line.strip()):
            outputs[match.group(1)] = match.group(2)
    return outputs


class CommandAction:
    """Run a shell command as a stage action.

    Parameters
    ----------
    command : str
        Shell command; ``${...}`` placeholders are substituted at run time
    cwd : str | None
        Working directory
    env : Mapping[str, str] | None
        Extra environment variables merged over the current environment
    """

    def __init__(
        self, command: str, cwd: str | None = None, env: Mapping[str, str] | None = None
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.env = dict(env or {})

    def render(self, ctx: StageContext) -> str:
        """Substitute bindings, inputs and params into the command."""
        values: dict[str, Any] = dict(ctx.bindings)
        values.update({f"inputs.{k}": _as_text(v) for k, v in ctx.inputs.items()})
        values.update({f"params.{k}": _as_text(v) for k, v in ctx.params.items()})
        return substitute(self.command, values, ctx.stage_id)

    def _environment(self, ctx: StageContext) -> dict[str, str]:
        env = {**os.environ, **self.env}
        env["STAGEGATE_RUN_ID"] = ctx.run_id
        env["STAGEGATE_STAGE_ID"] = ctx.stage_id
        for name, value in ctx.inputs.items():
            env[f"STAGEGATE_INPUT_{name.upper().replace('-', '_')}"] = _as_text(value)
        return env

    async def __call__(self, ctx: StageContext) -> dict[str, Any]:
        command = self.render(ctx)
        logger.debug("Stage '{stage}' running: {command}", stage=ctx.stage_id, command=command)

        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=self.cwd,
            env=self._environment(ctx),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        communicate = asyncio.ensure_future(proc.communicate())
        cancelled = asyncio.ensure_future(ctx.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
            if communicate not in done:
                proc.terminate()
                await communicate
                raise RunCancelledError(ctx.run_id)
            stdout_b, stderr_b = communicate.result()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise
        finally:
            cancelled.cancel()

        stdout = stdout_b.decode(errors="replace")
        stderr = stderr_b.decode(errors="replace")
        if proc.returncode != 0:
            raise CommandFailedError(command, proc.returncode or 0, stderr)

        return {**parse_outputs(stdout), "stdout": stdout.strip(), "returncode": proc.returncode}

    def __repr__(self) -> str:
        extra = f", cwd={self.cwd!r}" if self.cwd else ""
        if self.env:
            extra += f", env={dict(sorted(self.env.items()))!r}"
        return f"CommandAction({self.command!r}{extra})"
