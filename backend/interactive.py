import logging
import re
from pathlib import Path
from typing import Optional, Tuple

from cancellation import CancellationToken
from config import Settings
from evaluator import CheckerRunner, describe_exit, map_checker_code
from executor import ProcessExecutor
from judge import JudgeContext
from models import AbortReason, ExecutionData, JudgeResult, Verdict
from tcio import read_text
from temp_pool import TempPool

logger = logging.getLogger(__name__)

FEEDBACK_VERDICT = re.compile(r"^\s*verdict\s*=\s*([A-Za-z ]+?)\s*$", re.IGNORECASE | re.MULTILINE)


def parse_feedback(text: str) -> Optional[Verdict]:
    """Find an explicit `verdict=<AC|WA|...>` line in interactor feedback."""
    match = FEEDBACK_VERDICT.search(text or "")
    if not match:
        return None
    value = match.group(1)
    verdict = Verdict.from_abbr(value)
    if verdict is None:
        for candidate in Verdict:
            if candidate.value.lower() == value.lower():
                verdict = candidate
                break
    if verdict is None or verdict.is_running:
        return None
    return verdict


class InteractiveJudge:
    """Runs the solution against an interactor over a duplex pipe.

    The interactor is called as `interactor input_file feedback_file` and owns
    the verdict: an explicit `verdict=` line in the feedback file wins,
    otherwise its exit code is read like a checker's.
    """

    def __init__(self, executor: ProcessExecutor, checker_runner: CheckerRunner,
                 pool: TempPool, settings: Settings):
        self.executor = executor
        self.checker_runner = checker_runner
        self.pool = pool
        self.settings = settings

    async def judge(self, ctx: JudgeContext,
                    token: Optional[CancellationToken] = None) -> Tuple[JudgeResult, Optional[ExecutionData]]:
        problem = ctx.problem
        interactor = ctx.artifacts.interactor
        if interactor is None:
            failure = ctx.artifacts.failures.get("interactor")
            reason = failure.message if failure else "no interactor configured"
            return JudgeResult(Verdict.SYSTEM_ERROR, msg=f"Interactor is not available: {reason}"), None

        feedback_path = self.pool.create()
        Path(feedback_path).write_text("")
        try:
            solution, runner = await self.executor.execute_interactive(
                ctx.artifacts.solution.run_cmd,
                [*interactor.run_cmd, ctx.stdin_path, feedback_path],
                token=token,
                timeout_ms=problem.time_limit + self.settings.time_grace_ms,
                grace_ms=self.settings.interactor_grace_ms,
                memory_limit_mb=problem.memory_limit,
            )
            try:
                feedback = read_text(feedback_path).strip()
                interactor_err = read_text(runner.stderr_path).strip()
                result = await self._evaluate(ctx, solution, runner, feedback, interactor_err,
                                              feedback_path, token)
            finally:
                self.pool.dispose([runner.stdout_path, runner.stderr_path])
        finally:
            self.pool.dispose(feedback_path)
        logger.debug(f"[Interactive] {problem.id}: {result}")
        return result, solution

    async def _evaluate(self, ctx: JudgeContext, solution: ExecutionData, runner: ExecutionData,
                        feedback: str, interactor_err: str, feedback_path: str,
                        token: Optional[CancellationToken]) -> JudgeResult:
        problem = ctx.problem
        time_ms, memory_mb = solution.time_ms, solution.memory_mb
        msg = feedback or interactor_err

        if solution.is_user_aborted or runner.is_user_aborted:
            return JudgeResult(Verdict.REJECTED, time_ms, memory_mb)
        if solution.is_timeout or time_ms > problem.time_limit:
            return JudgeResult(Verdict.TIME_LIMIT, problem.time_limit, memory_mb)
        if runner.is_timeout and solution.abort_reason == AbortReason.PEER:
            return JudgeResult(Verdict.TIME_LIMIT, problem.time_limit, memory_mb,
                               msg="Interactor timed out while the solution was running")
        if problem.memory_limit and (solution.abort_reason == AbortReason.MEMORY
                                     or (memory_mb is not None and memory_mb > problem.memory_limit)):
            return JudgeResult(Verdict.MEMORY_LIMIT, time_ms, memory_mb)

        verdict = parse_feedback(feedback)
        if verdict is not None:
            return JudgeResult(verdict, time_ms, memory_mb, msg=msg)

        if runner.abort_reason is not None:
            return JudgeResult(Verdict.SYSTEM_ERROR, time_ms, memory_mb,
                               msg=f"Interactor did not terminate ({runner.abort_reason.value})\n{msg}".strip())
        if isinstance(runner.code_or_signal, str):
            return JudgeResult(Verdict.SYSTEM_ERROR, time_ms, memory_mb,
                               msg=f"Interactor crashed: {describe_exit(runner.code_or_signal)}\n{msg}".strip())
        if runner.code_or_signal != 0:
            verdict = map_checker_code(runner.code_or_signal)
            if verdict == Verdict.SYSTEM_ERROR:
                msg = f"Interactor failed ({describe_exit(runner.code_or_signal)})\n{msg}".strip()
            return JudgeResult(verdict, time_ms, memory_mb, msg=msg)

        if solution.abort_reason == AbortReason.PEER:
            return JudgeResult(Verdict.TIME_LIMIT, time_ms, memory_mb,
                               msg="Solution did not exit after the interactor finished")
        if solution.is_abnormal:
            return JudgeResult(Verdict.RUNTIME_ERROR, time_ms, memory_mb,
                               msg=describe_exit(solution.code_or_signal))

        checker = ctx.artifacts.checker
        if checker is not None:
            result = await self.checker_runner.run(
                checker.run_cmd, ctx.stdin_path, solution.stdout_path, ctx.answer_path,
                token, feedback_path=feedback_path)
            result.time_ms = time_ms
            result.memory_mb = memory_mb
            return result
        return JudgeResult(Verdict.ACCEPTED, time_ms, memory_mb, msg=msg)
