import logging
from typing import Callable, List, Optional

from cancellation import CancellationToken
from compiler import Compiler
from config import Settings
from evaluator import describe_exit
from events import EventSink
from executor import ProcessExecutor
from judge import Judge, JudgeContext
from models import BfCompare, ExecutionContext, Problem, Verdict
from strategies import ExecutionStrategy
from tcio import read_text, try_inline
from temp_pool import TempPool

logger = logging.getLogger(__name__)


class BfCompareService:
    """Stress tester: generate, run brute force, run solution, compare; repeat.

    Stops at the first input where the solution disagrees with the brute
    force, saving that input as a new testcase, or when the token is cancelled.
    """

    def __init__(self, compiler: Compiler, executor: ProcessExecutor, strategy: ExecutionStrategy,
                 judge: Judge, pool: TempPool, settings: Settings, sink: Optional[EventSink] = None):
        self.compiler = compiler
        self.executor = executor
        self.strategy = strategy
        self.judge = judge
        self.pool = pool
        self.settings = settings
        self.sink = sink or EventSink()

    async def run(self, problem: Problem, token: CancellationToken, force_recompile: bool = False,
                  on_iteration: Optional[Callable[[BfCompare], None]] = None) -> BfCompare:
        if not problem.generator or not problem.brute_force:
            state = BfCompare(problem.generator or "", problem.brute_force or "",
                              msg="Both a generator and a brute force solution are required")
            problem.bf_compare = state
            self.sink.bf_compare_updated(problem)
            return state

        state = BfCompare(problem.generator, problem.brute_force, running=True, msg="Compiling...")
        problem.bf_compare = state
        self.sink.bf_compare_updated(problem)
        try:
            if problem.interactor:
                state.msg = "Brute force comparison does not support interactive problems"
                return state

            artifacts = await self.compiler.compile(problem, force_recompile, token)
            if token.cancelled:
                state.msg = "Stopped"
                return state
            missing = [unit for unit in ("solution", "generator", "brute_force")
                       if getattr(artifacts, unit) is None]
            if missing:
                state.msg = "Compilation failed\n" + artifacts.message()
                return state

            state.msg = "Running..."
            self.sink.bf_compare_updated(problem)
            seed = self.settings.bf_seed_start
            while not token.cancelled:
                state.count += 1
                found = await self._iteration(problem, artifacts, state, seed, token)
                if on_iteration is not None:
                    on_iteration(state)
                if found or token.cancelled:
                    break
                seed += 1
                self.sink.bf_compare_updated(problem)
            if token.cancelled and state.found_testcase_id is None and state.msg == "Running...":
                state.msg = f"Stopped after {state.count} iterations"
            return state
        finally:
            state.running = False
            self.sink.bf_compare_updated(problem)

    async def _iteration(self, problem, artifacts, state: BfCompare, seed: int,
                         token: CancellationToken) -> bool:
        """One generate/compare round. Returns True when the loop must stop."""
        disposables: List[str] = []
        try:
            generated = await self.executor.execute(
                [*artifacts.generator.run_cmd, str(seed)],
                token=token,
                timeout_ms=self.settings.bf_generator_time_limit_ms,
            )
            disposables += [generated.stdout_path, generated.stderr_path]
            if generated.is_user_aborted:
                return True
            if generated.abort_reason is not None or generated.is_abnormal:
                reason = "timeout" if generated.is_timeout else describe_exit(generated.code_or_signal)
                state.msg = (f"Internal error: generator failed on seed {seed} ({reason})\n"
                             f"{read_text(generated.stderr_path).strip()}").strip()
                return True

            expected = await self.strategy.execute(
                ExecutionContext(artifacts.brute_force.run_cmd, generated.stdout_path,
                                 problem.time_limit, problem.memory_limit),
                token,
            )
            disposables += [expected.stdout_path, expected.stderr_path]
            if expected.is_user_aborted:
                return True
            if expected.abort_reason is not None or expected.is_abnormal:
                reason = "timeout" if expected.is_timeout else describe_exit(expected.code_or_signal)
                state.msg = (f"Internal error: brute force failed on seed {seed} ({reason})\n"
                             f"{read_text(expected.stderr_path).strip()}").strip()
                return True

            result, execution = await self.judge.judge(
                JudgeContext(problem, artifacts, generated.stdout_path, expected.stdout_path), token)
            if execution is not None:
                disposables += [execution.stdout_path, execution.stderr_path]
            if result.verdict == Verdict.REJECTED or token.cancelled:
                return True
            if result.verdict == Verdict.ACCEPTED:
                return False

            # keep the files: they now belong to the new testcase
            limit = self.settings.max_inline_bytes
            for path in (generated.stdout_path, expected.stdout_path,
                         execution.stdout_path, execution.stderr_path):
                disposables.remove(path)
            testcase = problem.add_testcase(
                try_inline(generated.stdout_path, self.pool, limit),
                try_inline(expected.stdout_path, self.pool, limit),
            )
            testcase.update_result(
                result.verdict,
                time_ms=result.time_ms,
                memory_mb=result.memory_mb,
                stdout=try_inline(execution.stdout_path, self.pool, limit),
                stderr=try_inline(execution.stderr_path, self.pool, limit),
                msg=result.msg,
            )
            state.found_testcase_id = testcase.id
            state.msg = f"Found a difference on iteration {state.count} (seed {seed}): {result.verdict.value}"
            logger.info(f"[BfCompare] {problem.id}: {state.msg}")
            self.sink.testcase_updated(problem, testcase)
            return True
        finally:
            self.pool.dispose(disposables)
