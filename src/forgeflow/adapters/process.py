"""Shell command runner on asyncio subprocesses."""

from __future__ import annotations

import asyncio

from forgeflow.core.models import ProcessResult
from forgeflow.exceptions import OperationTimeoutError
from forgeflow.logging import get_logger

logger = get_logger("forgeflow.adapters.process")

MAX_OUTPUT_BYTES = 1_048_576


class SubprocessRunner:
    """ProcessRunner that kills the child when the timeout expires."""

    def __init__(self, max_output_bytes: int = MAX_OUTPUT_BYTES):
        self._max_output = max_output_bytes

    async def run(self, command: str, cwd: str, timeout: float = 300.0) -> ProcessResult:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("Command killed after %.0fs: %s", timeout, command)
            raise OperationTimeoutError(
                f"Command exceeded {timeout:.0f}s limit: {command}",
                context={"command": command, "timeout": timeout},
            ) from None

        return ProcessResult(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=self._decode(stdout),
            stderr=self._decode(stderr),
        )

    def _decode(self, data: bytes) -> str:
        text = data.decode("utf-8", errors="replace")
        if len(text) > self._max_output:
            return text[: self._max_output] + f"\n[TRUNCATED at {self._max_output} bytes]"
        return text
