"""Command readiness probe: ready when a shell command exits 0."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping


class CommandProbe:
    """Ready when *command* exits with status 0.

    The subprocess is killed if the awaiting task is cancelled, which is how
    the health gate's per-attempt timeout stops a hung check.
    """

    def __init__(
        self, command: str, cwd: str | None = None, env: Mapping[str, str] | None = None
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.env = {**os.environ, **env} if env is not None else None

    async def __call__(self) -> bool:
        proc = await asyncio.create_subprocess_shell(
            self.command,
            cwd=self.cwd,
            env=self.env,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            return await proc.wait() == 0
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

    def __repr__(self) -> str:
        return f"CommandProbe({self.command!r})"
