import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from cancellation import CancellationToken
from evaluator import ResultEvaluator
from models import CompileResult, ExecutionContext, ExecutionData, JudgeResult, Problem
from strategies import ExecutionStrategy

logger = logging.getLogger(__name__)


@dataclass
class JudgeContext:
    """Everything one testcase run needs: compiled units and materialized files."""

    problem: Problem
    artifacts: CompileResult
    stdin_path: str
    answer_path: str


class Judge:
    """Standard judge: run the solution once, then evaluate its output."""

    def __init__(self, strategy: ExecutionStrategy, evaluator: ResultEvaluator):
        self.strategy = strategy
        self.evaluator = evaluator

    async def judge(self, ctx: JudgeContext,
                    token: Optional[CancellationToken] = None) -> Tuple[JudgeResult, Optional[ExecutionData]]:
        """Returns the verdict and the execution whose stdout/stderr the caller now owns."""
        problem = ctx.problem
        execution = await self.strategy.execute(
            ExecutionContext(
                cmd=ctx.artifacts.solution.run_cmd,
                stdin_path=ctx.stdin_path,
                time_limit=problem.time_limit,
                memory_limit=problem.memory_limit,
            ),
            token,
        )
        checker = ctx.artifacts.checker
        result = await self.evaluator.judge(
            execution,
            ctx.stdin_path,
            ctx.answer_path,
            time_limit=problem.time_limit,
            memory_limit=problem.memory_limit,
            checker_cmd=checker.run_cmd if checker else None,
            token=token,
        )
        logger.debug(f"[Judge] {problem.id}: {result}")
        return result, execution


def create_judge(problem: Problem, standard: Judge, interactive) -> object:
    """Interactive problems go to the interactive judge, everything else is standard."""
    return interactive if problem.interactor else standard
