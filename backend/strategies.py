import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Optional

from cancellation import CancellationToken
from config import Settings
from executor import ProcessExecutor, signal_name
from models import AbortReason, ExecutionContext, ExecutionData, JudgeError
from temp_pool import TempPool

logger = logging.getLogger(__name__)

MEMWRAP_PATH = Path(__file__).parent / "memwrap.py"


class ExecutionStrategy:
    """Runs one program under time and memory limits."""

    name = "abstract"

    def __init__(self, executor: ProcessExecutor, pool: TempPool, settings: Settings):
        self.executor = executor
        self.pool = pool
        self.settings = settings

    def hard_timeout_ms(self, ctx: ExecutionContext) -> int:
        return ctx.time_limit + self.settings.time_grace_ms

    async def execute(self, ctx: ExecutionContext,
                      token: Optional[CancellationToken] = None) -> ExecutionData:
        raise NotImplementedError


class NormalStrategy(ExecutionStrategy):
    """Direct spawn; memory is sampled from outside with psutil."""

    name = "normal"

    async def execute(self, ctx, token=None):
        return await self.executor.execute(
            ctx.cmd,
            token=token,
            timeout_ms=self.hard_timeout_ms(ctx),
            stdin_path=ctx.stdin_path,
            memory_limit_mb=ctx.memory_limit,
        )


class WrapperStrategy(ExecutionStrategy):
    """Runs the program under memwrap.py and trusts its report for time and memory."""

    name = "wrapper"

    async def execute(self, ctx, token=None):
        report_path = self.pool.create()
        Path(report_path).write_text("")
        cmd = [sys.executable, str(MEMWRAP_PATH), report_path, "--", *ctx.cmd]
        try:
            data = await self.executor.execute(
                cmd,
                token=token,
                timeout_ms=self.hard_timeout_ms(ctx),
                stdin_path=ctx.stdin_path,
            )
            if data.abort_reason is not None:
                return data
            report = _read_report(report_path)
        finally:
            self.pool.dispose(report_path)

        if report is None:
            logger.warning("[Wrapper] Missing or unreadable report, using outside measurements")
            return data
        if report.get("error"):
            self.pool.dispose([data.stdout_path, data.stderr_path])
            raise JudgeError(f"Wrapper failed to start program: {report['error']}")

        data.time_ms = report.get("time_ms", data.time_ms)
        data.memory_mb = report.get("memory_mb")
        data.code_or_signal = report["signal"] if report.get("signal") else report.get("exit_code", 0)
        return data


class ExternalStrategy(ExecutionStrategy):
    """Delegates limits to an external runner binary.

    The runner is called as `runner COMMAND stdin stdout stderr --time-limit T
    --memory-limit M`, where COMMAND is the whole program command line as one
    shell-quoted argument, and prints a JSON report on its stdout. Writing `k`
    to its stdin asks it to kill the program.
    """

    name = "external"

    async def execute(self, ctx, token=None):
        stdin_path = ctx.stdin_path
        owned_stdin = None
        if stdin_path is None:
            owned_stdin = stdin_path = self.pool.create()
            Path(stdin_path).write_bytes(b"")
        stdout_path = self.pool.create()
        stderr_path = self.pool.create()

        cmd = [
            *self.settings.external_runner,
            shlex.join(ctx.cmd), stdin_path, stdout_path, stderr_path,
            "--time-limit", str(ctx.time_limit),
            "--memory-limit", str(ctx.memory_limit or 0),
        ]
        try:
            # the runner enforces the limit itself, this is only a watchdog
            runner = await self.executor.execute(
                cmd,
                token=token,
                timeout_ms=self.hard_timeout_ms(ctx) + self.settings.time_grace_ms,
                soft_kill=True,
            )
        except OSError:
            self.pool.dispose([stdout_path, stderr_path])
            raise
        finally:
            if owned_stdin is not None:
                self.pool.dispose(owned_stdin)

        try:
            report_text = Path(runner.stdout_path).read_text(errors="replace")
            runner_err = Path(runner.stderr_path).read_text(errors="replace").strip()
        finally:
            self.pool.dispose([runner.stdout_path, runner.stderr_path])

        if runner.abort_reason in (AbortReason.USER, AbortReason.TIMEOUT) and not report_text.strip():
            return ExecutionData(
                code_or_signal=runner.code_or_signal,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                time_ms=runner.time_ms,
                abort_reason=runner.abort_reason,
            )

        try:
            info = json.loads(report_text)
        except ValueError:
            self.pool.dispose([stdout_path, stderr_path])
            raise JudgeError(f"External runner produced invalid output: {report_text[:200]!r} {runner_err}")
        if info.get("error"):
            self.pool.dispose([stdout_path, stderr_path])
            raise JudgeError(f"External runner error: {info.get('error')} {runner_err}".strip())

        if runner.is_user_aborted:
            reason = AbortReason.USER
        elif info.get("killed") or runner.is_timeout:
            reason = AbortReason.TIMEOUT
        else:
            reason = None
        return ExecutionData(
            code_or_signal=_exit_from_report(info),
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            time_ms=float(info.get("time", runner.time_ms)),
            memory_mb=info.get("memory"),
            abort_reason=reason,
        )


def _exit_from_report(info: dict):
    """A runner reports `signal: 0` (or null) for a normal exit."""
    sig = info.get("signal")
    if not sig:
        return info.get("exitCode") or 0
    if isinstance(sig, int) or str(sig).isdigit():
        return signal_name(int(sig))
    return sig


def _read_report(path: str) -> Optional[dict]:
    try:
        text = Path(path).read_text()
        return json.loads(text) if text.strip() else None
    except (OSError, ValueError):
        return None


STRATEGIES = {
    NormalStrategy.name: NormalStrategy,
    WrapperStrategy.name: WrapperStrategy,
    ExternalStrategy.name: ExternalStrategy,
}


def create_strategy(settings: Settings, executor: ProcessExecutor, pool: TempPool) -> ExecutionStrategy:
    return STRATEGIES[settings.execution_mode](executor, pool, settings)
