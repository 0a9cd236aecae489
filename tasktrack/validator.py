"""
Validator: runs the configured typecheck / lint / test commands.

Pass or fail is the exit status and nothing else. Output is captured
(stderr folded into stdout) and kept verbatim up to a cap so the
completion report can show it.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger
from pydantic import BaseModel

from tasktrack.config_loader import TrackConfig

MAX_OUTPUT_CHARS = 2000


class CheckResult(BaseModel):
    name: str
    passed: bool
    raw_output: str = ""
    returncode: int | None = None
    timed_out: bool = False
    skipped: bool = False


def _cap(output: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(output) <= limit:
        return output
    # The tail usually carries the failure summary
    return f"... [{len(output) - limit} chars truncated]\n" + output[-limit:]


class Validator:
    """Runs the enabled validation checks in the repository."""

    def __init__(self, repo_path: Path, config: TrackConfig):
        self.repo_path = repo_path.resolve()
        self.config = config

    def enabled_checks(self) -> list[str]:
        return [name for name, check in self.config.validation.checks().items() if check.enabled]

    async def run(self, check_name: str) -> CheckResult:
        checks = self.config.validation.checks()
        if check_name not in checks:
            raise ValueError(f"Unknown check: {check_name}. Known: {list(checks)}")

        command = checks[check_name].command.strip()
        if not command:
            logger.info(f"[VALIDATE] {check_name}: no command configured, skipping")
            return CheckResult(name=check_name, passed=True, skipped=True)

        timeout = self.config.limits.validation_timeout
        logger.info(f"[VALIDATE] {check_name}: {command}")
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=self.repo_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.warning(f"[VALIDATE] {check_name}: could not start: {e}")
            return CheckResult(name=check_name, passed=False, raw_output=str(e))

        try:
            stdout_bytes, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"[VALIDATE] {check_name}: timed out after {timeout}s")
            return CheckResult(
                name=check_name,
                passed=False,
                raw_output=f"{check_name} timed out after {timeout}s",
                timed_out=True,
            )

        output = stdout_bytes.decode("utf-8", errors="replace")
        passed = process.returncode == 0
        level = "INFO" if passed else "WARNING"
        logger.log(level, f"[VALIDATE] {check_name}: {'passed' if passed else f'failed ({process.returncode})'}")
        return CheckResult(
            name=check_name,
            passed=passed,
            raw_output=_cap(output),
            returncode=process.returncode,
        )

    async def run_all(self) -> list[CheckResult]:
        """Run every enabled check in order, one at a time."""
        results = []
        for name in self.enabled_checks():
            results.append(await self.run(name))
        return results
