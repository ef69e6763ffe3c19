import logging
from pathlib import Path
from typing import List, Optional

from cancellation import CancellationToken
from config import Settings
from executor import ProcessExecutor
from models import AbortReason, ExecutionData, JudgeResult, Verdict
from tcio import read_text
from temp_pool import TempPool

logger = logging.getLogger(__name__)

# testlib.h exit codes: 0=AC, 1=WA, 2=PE, anything else is a checker failure
CHECKER_CODES = {
    0: Verdict.ACCEPTED,
    1: Verdict.WRONG_ANSWER,
    2: Verdict.PRESENTATION_ERROR,
}


def map_checker_code(code) -> Verdict:
    if isinstance(code, str):
        return Verdict.SYSTEM_ERROR
    return CHECKER_CODES.get(code, Verdict.SYSTEM_ERROR)


def _significant_lines(text: str) -> List[str]:
    lines = [line.rstrip() for line in text.splitlines()]
    while lines and not lines[-1]:
        lines.pop()
    return lines


def compare_text(actual: str, expected: str, mode: str = "lines") -> bool:
    """
    lines:  ignore trailing whitespace on each line and trailing blank lines
    tokens: ignore all whitespace differences
    exact:  byte-for-byte, apart from CRLF vs LF
    """
    if mode == "tokens":
        return actual.split() == expected.split()
    if mode == "exact":
        return actual.replace("\r\n", "\n") == expected.replace("\r\n", "\n")
    return _significant_lines(actual) == _significant_lines(expected)


def compare_output(user_output: str, expected_output: str, mode: str = "lines") -> bool:
    """Compare two output files with compare_text."""
    if not Path(user_output).exists():
        return False
    return compare_text(read_text(user_output), read_text(expected_output), mode)


def describe_exit(code_or_signal) -> str:
    if isinstance(code_or_signal, str):
        return f"Killed by signal {code_or_signal}"
    return f"Exit code: {code_or_signal}"


class CheckerRunner:
    """Runs a testlib-style checker: `checker input output answer [feedback]`."""

    def __init__(self, executor: ProcessExecutor, pool: TempPool, timeout_ms: int):
        self.executor = executor
        self.pool = pool
        self.timeout_ms = timeout_ms

    async def run(self, checker_cmd: List[str], input_path: str, output_path: str,
                  answer_path: str, token: Optional[CancellationToken] = None,
                  feedback_path: Optional[str] = None) -> JudgeResult:
        cmd = [*checker_cmd, input_path, output_path, answer_path]
        if feedback_path is not None:
            cmd.append(feedback_path)
        data = await self.executor.execute(cmd, token=token, timeout_ms=self.timeout_ms)
        try:
            msg = read_text(data.stderr_path).strip() or read_text(data.stdout_path).strip()
        finally:
            self.pool.dispose([data.stdout_path, data.stderr_path])

        if data.is_user_aborted:
            return JudgeResult(Verdict.REJECTED)
        if data.is_timeout:
            logger.warning(f"[Checker] Timeout after {self.timeout_ms}ms on {Path(input_path).name}")
            return JudgeResult(Verdict.SYSTEM_ERROR, msg=f"Checker timeout after {self.timeout_ms}ms")
        verdict = map_checker_code(data.code_or_signal)
        if verdict == Verdict.SYSTEM_ERROR:
            msg = f"Checker failed ({describe_exit(data.code_or_signal)})\n{msg}".strip()
        return JudgeResult(verdict, msg=msg[:2000])


class ResultEvaluator:
    """Turns one execution into a verdict.

    Order: rejected, time limit, memory limit, runtime error, then the output
    check. Reads the captured output but never consumes it, so evaluating the
    same execution twice gives the same answer.
    """

    def __init__(self, settings: Settings, checker_runner: CheckerRunner):
        self.settings = settings
        self.checker_runner = checker_runner

    async def judge(self, execution: ExecutionData, input_path: str, answer_path: str,
                    time_limit: int, memory_limit: Optional[int] = None,
                    checker_cmd: Optional[List[str]] = None,
                    token: Optional[CancellationToken] = None) -> JudgeResult:
        time_ms = execution.time_ms
        memory_mb = execution.memory_mb

        if execution.is_user_aborted:
            return JudgeResult(Verdict.REJECTED, time_ms, memory_mb)
        if execution.is_timeout or time_ms > time_limit:
            return JudgeResult(Verdict.TIME_LIMIT, time_limit, memory_mb)
        if memory_limit and (execution.abort_reason == AbortReason.MEMORY
                             or (memory_mb is not None and memory_mb > memory_limit)):
            return JudgeResult(Verdict.MEMORY_LIMIT, time_ms, memory_mb)
        if execution.is_abnormal:
            return JudgeResult(Verdict.RUNTIME_ERROR, time_ms, memory_mb,
                               msg=describe_exit(execution.code_or_signal))
        if self.settings.stderr_as_re and Path(execution.stderr_path).stat().st_size > 0:
            return JudgeResult(Verdict.RUNTIME_ERROR, time_ms, memory_mb,
                               msg="Program wrote to stderr")

        output = Path(execution.stdout_path)
        output_size = output.stat().st_size if output.exists() else 0
        if output_size > self.settings.max_output_bytes:
            return JudgeResult(Verdict.RUNTIME_ERROR, time_ms, memory_mb,
                               msg=f"Output too large: {output_size} bytes (limit: {self.settings.max_output_bytes})")

        if checker_cmd:
            result = await self.checker_runner.run(
                checker_cmd, input_path, execution.stdout_path, answer_path, token)
            result.time_ms = time_ms
            result.memory_mb = memory_mb
            return result

        if compare_output(execution.stdout_path, answer_path, self.settings.compare_mode):
            return JudgeResult(Verdict.ACCEPTED, time_ms, memory_mb)
        return JudgeResult(Verdict.WRONG_ANSWER, time_ms, memory_mb)
