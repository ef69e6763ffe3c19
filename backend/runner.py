import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from bf_compare import BfCompareService
from cancellation import CancellationToken
from compiler import Compiler
from config import Settings, load_settings
from evaluator import CheckerRunner, ResultEvaluator
from events import EventSink
from executor import ProcessExecutor
from interactive import InteractiveJudge
from judge import Judge, JudgeContext, create_judge
from languages import LanguageRegistry
from models import BfCompare, CompileResult, CompileStatus, Problem, Testcase, Verdict
from strategies import create_strategy
from tcio import materialize, try_inline
from temp_pool import TempPool

logger = logging.getLogger(__name__)


@dataclass
class _Claim:
    token: CancellationToken
    done: asyncio.Event = field(default_factory=asyncio.Event)


class TestcaseRunner:
    """Drives compile and judge runs for problems and owns their cancellation.

    A run-all holds one run-wide token per problem and a child token per
    testcase. Starting a run for a testcase that is already running cancels
    the old run and waits for it to settle first. Exceptions inside a testcase
    run end up as System Error on that testcase, never in the caller.
    """

    __test__ = False

    def __init__(self, settings: Optional[Settings] = None, sink: Optional[EventSink] = None,
                 registry: Optional[LanguageRegistry] = None):
        self.settings = settings or load_settings()
        self.sink = sink or EventSink()
        self.registry = registry or LanguageRegistry.from_config(self.settings.languages)
        self.pool = TempPool(self.settings.temp_dir)
        self.executor = ProcessExecutor(self.pool, self.settings.memory_poll_interval_ms,
                                        self.settings.time_grace_ms)
        self.compiler = Compiler(self.registry, self.executor, self.pool, self.settings)
        self.strategy = create_strategy(self.settings, self.executor, self.pool)
        checker_runner = CheckerRunner(self.executor, self.pool, self.settings.checker_timeout_ms)
        self.evaluator = ResultEvaluator(self.settings, checker_runner)
        self.standard_judge = Judge(self.strategy, self.evaluator)
        self.interactive_judge = InteractiveJudge(self.executor, checker_runner, self.pool, self.settings)
        self.bf_compare = BfCompareService(self.compiler, self.executor, self.strategy,
                                           self.standard_judge, self.pool, self.settings, self.sink)

        self._semaphore: Optional[asyncio.Semaphore] = None
        self._run_tokens: Dict[str, CancellationToken] = {}
        self._claims: Dict[Tuple[str, str], _Claim] = {}
        self._bf_tokens: Dict[str, CancellationToken] = {}

    @property
    def semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_judges)
        return self._semaphore

    async def run_all(self, problem: Problem, force_recompile: bool = False) -> List[Testcase]:
        """Run every enabled testcase. Returns them once all have settled."""
        return await self._run(problem, problem.enabled_testcase_ids(), force_recompile)

    async def run_single(self, problem: Problem, testcase_id: str,
                         force_recompile: bool = False) -> Testcase:
        problem.get_testcase(testcase_id)
        testcases = await self._run(problem, [testcase_id], force_recompile)
        return testcases[0]

    def stop(self, problem_id: str, testcase_id: Optional[str] = None) -> bool:
        """Cancel a whole problem run, or just one testcase of it."""
        if testcase_id is not None:
            claim = self._claims.get((problem_id, testcase_id))
            if claim is None:
                return False
            claim.token.cancel("stopped")
            return True
        token = self._run_tokens.get(problem_id)
        stopped = False
        if token is not None:
            token.cancel("stopped")
            stopped = True
        for (pid, _), claim in list(self._claims.items()):
            if pid == problem_id:
                claim.token.cancel("stopped")
                stopped = True
        return stopped

    async def start_bf_compare(self, problem: Problem, force_recompile: bool = False,
                               on_iteration: Optional[Callable[[BfCompare], None]] = None) -> BfCompare:
        self.stop_bf_compare(problem.id)
        token = CancellationToken()
        self._bf_tokens[problem.id] = token
        try:
            return await self.bf_compare.run(problem, token, force_recompile, on_iteration)
        finally:
            if self._bf_tokens.get(problem.id) is token:
                del self._bf_tokens[problem.id]

    def stop_bf_compare(self, problem_id: str) -> bool:
        token = self._bf_tokens.get(problem_id)
        if token is None:
            return False
        token.cancel("stopped")
        return True

    async def _run(self, problem: Problem, testcase_ids: List[str],
                   force_recompile: bool) -> List[Testcase]:
        run_token = CancellationToken()
        self._run_tokens[problem.id] = run_token

        claims = [await self._claim(problem.id, tc_id, run_token) for tc_id in testcase_ids]
        testcases = [problem.get_testcase(tc_id) for tc_id in testcase_ids]
        try:
            for testcase in testcases:
                self.pool.dispose(testcase.clear_result())
                testcase.update_result(Verdict.COMPILING)
                self.sink.testcase_updated(problem, testcase)

            try:
                artifacts = await self.compiler.compile(problem, force_recompile, run_token)
            except Exception as e:
                logger.exception(f"[Runner] Compile of {problem.id} failed")
                self._settle_all(problem, testcases, claims, Verdict.SYSTEM_ERROR, f"{type(e).__name__}: {e}")
                return testcases
            self.sink.problem_updated(problem)

            if not artifacts.ok:
                verdict, msg = self._compile_failure(artifacts)
                self._settle_all(problem, testcases, claims, verdict, msg)
                return testcases

            await asyncio.gather(*(
                self._judge_one(problem, artifacts, testcase, claim)
                for testcase, claim in zip(testcases, claims)
            ))
            return testcases
        finally:
            for tc_id, claim in zip(testcase_ids, claims):
                self._release(problem.id, tc_id, claim)
            if self._run_tokens.get(problem.id) is run_token:
                del self._run_tokens[problem.id]

    async def _claim(self, problem_id: str, testcase_id: str,
                     run_token: CancellationToken) -> _Claim:
        key = (problem_id, testcase_id)
        existing = self._claims.get(key)
        claim = _Claim(run_token.child())
        self._claims[key] = claim
        if existing is not None:
            logger.info(f"[Runner] Replacing in-flight run of {problem_id}/{testcase_id}")
            existing.token.cancel("superseded")
            await existing.done.wait()
        return claim

    @staticmethod
    def _compile_failure(artifacts: CompileResult) -> Tuple[Verdict, str]:
        failure = artifacts.failures.get("solution")
        if failure is None:
            return Verdict.SYSTEM_ERROR, artifacts.message() or "Solution was not compiled"
        if failure.status == CompileStatus.ABORTED:
            return Verdict.REJECTED, failure.message
        if failure.status == CompileStatus.UNSUPPORTED:
            return Verdict.SYSTEM_ERROR, failure.message
        return Verdict.COMPILE_ERROR, failure.message

    def _release(self, problem_id: str, testcase_id: str, claim: _Claim):
        """Let a run waiting to replace this testcase go ahead."""
        claim.done.set()
        if self._claims.get((problem_id, testcase_id)) is claim:
            del self._claims[(problem_id, testcase_id)]

    def _settle_all(self, problem: Problem, testcases: List[Testcase], claims: List[_Claim],
                    verdict: Verdict, msg: str):
        for testcase, claim in zip(testcases, claims):
            testcase.update_result(verdict, msg=msg)
            self.sink.testcase_updated(problem, testcase)
            self._release(problem.id, testcase.id, claim)

    async def _judge_one(self, problem: Problem, artifacts: CompileResult,
                         testcase: Testcase, claim: _Claim):
        token = claim.token
        owned: List[str] = []
        try:
            async with self.semaphore:
                if token.cancelled:
                    testcase.update_result(Verdict.REJECTED)
                    return
                testcase.update_result(Verdict.JUDGING)
                self.sink.testcase_updated(problem, testcase)

                stdin_path, stdin_owned = materialize(testcase.stdin, self.pool)
                if stdin_owned:
                    owned.append(stdin_path)
                answer_path, answer_owned = materialize(testcase.answer, self.pool)
                if answer_owned:
                    owned.append(answer_path)

                judge = create_judge(problem, self.standard_judge, self.interactive_judge)
                result, execution = await judge.judge(
                    JudgeContext(problem, artifacts, stdin_path, answer_path), token)

                stdout = stderr = None
                if execution is not None:
                    limit = self.settings.max_inline_bytes
                    stdout = try_inline(execution.stdout_path, self.pool, limit)
                    stderr = try_inline(execution.stderr_path, self.pool, limit)
                testcase.update_result(result.verdict, result.time_ms, result.memory_mb,
                                       stdout, stderr, result.msg)
        except Exception as e:
            logger.exception(f"[Runner] Testcase {problem.id}/{testcase.id} failed")
            testcase.update_result(Verdict.SYSTEM_ERROR, msg=f"{type(e).__name__}: {e}")
        finally:
            self.pool.dispose(owned)
            if testcase.verdict is not None and testcase.verdict.is_running:
                testcase.update_result(Verdict.REJECTED if token.cancelled else Verdict.SYSTEM_ERROR)
            self.sink.testcase_updated(problem, testcase)
            self._release(problem.id, testcase.id, claim)
