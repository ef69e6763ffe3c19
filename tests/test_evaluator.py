"""Tests for verdict evaluation and output comparison."""

import dataclasses
import sys
from pathlib import Path

import pytest

from evaluator import CheckerRunner, ResultEvaluator, compare_text, map_checker_code
from models import AbortReason, ExecutionData, Verdict


@pytest.fixture
def make_execution(pool):
    def make(stdout="", stderr="", code=0, time_ms=10.0, memory_mb=None, abort_reason=None):
        stdout_path, stderr_path = pool.create(), pool.create()
        Path(stdout_path).write_text(stdout)
        Path(stderr_path).write_text(stderr)
        return ExecutionData(code, stdout_path, stderr_path, time_ms, memory_mb, abort_reason)

    return make


@pytest.fixture
def files(tmp_path):
    def make(input_text, answer_text):
        input_path, answer_path = tmp_path / "input.txt", tmp_path / "answer.txt"
        input_path.write_text(input_text)
        answer_path.write_text(answer_text)
        return str(input_path), str(answer_path)

    return make


@pytest.fixture
def evaluator(settings, executor, pool):
    return ResultEvaluator(settings, CheckerRunner(executor, pool, settings.checker_timeout_ms))


def test_lines_mode_ignores_trailing_whitespace():
    assert compare_text("1 2  \n3\n\n\n", "1 2\n3", "lines")
    assert compare_text("1\r\n2\r\n", "1\n2\n", "lines")
    assert not compare_text("1  2\n", "1 2\n", "lines")
    assert not compare_text("1\n\n2\n", "1\n2\n", "lines")


def test_tokens_mode_ignores_all_whitespace():
    assert compare_text("1  2\n\n3", "1 2 3\n", "tokens")
    assert not compare_text("1 2", "1 2 3", "tokens")


def test_exact_mode():
    assert compare_text("1\r\n", "1\n", "exact")
    assert not compare_text("1 \n", "1\n", "exact")


def test_checker_exit_codes():
    assert map_checker_code(0) == Verdict.ACCEPTED
    assert map_checker_code(1) == Verdict.WRONG_ANSWER
    assert map_checker_code(2) == Verdict.PRESENTATION_ERROR
    assert map_checker_code(3) == Verdict.SYSTEM_ERROR
    assert map_checker_code(7) == Verdict.SYSTEM_ERROR
    assert map_checker_code("SIGSEGV") == Verdict.SYSTEM_ERROR


@pytest.mark.asyncio
async def test_whitespace_only_difference_is_accepted(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("42   \n\n"), input_path, answer_path, time_limit=1000)

    assert result.verdict == Verdict.ACCEPTED


@pytest.mark.asyncio
async def test_wrong_answer(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("41\n"), input_path, answer_path, time_limit=1000)

    assert result.verdict == Verdict.WRONG_ANSWER


@pytest.mark.asyncio
async def test_rejected_wins_over_everything(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")
    execution = make_execution("42\n", code="SIGKILL", time_ms=5000, abort_reason=AbortReason.USER)

    result = await evaluator.judge(execution, input_path, answer_path, time_limit=1000)

    assert result.verdict == Verdict.REJECTED


@pytest.mark.asyncio
async def test_timeout_reports_the_limit(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")
    execution = make_execution("", code="SIGKILL", time_ms=1304.2, abort_reason=AbortReason.TIMEOUT)

    result = await evaluator.judge(execution, input_path, answer_path, time_limit=1000)

    assert result.verdict == Verdict.TIME_LIMIT
    assert result.time_ms == 1000


@pytest.mark.asyncio
async def test_slow_but_finished_run_is_tle(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("42\n", time_ms=1200), input_path, answer_path,
                                   time_limit=1000)

    assert result.verdict == Verdict.TIME_LIMIT


@pytest.mark.asyncio
async def test_memory_limit_before_runtime_error(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")
    execution = make_execution("", code="SIGKILL", memory_mb=300, abort_reason=AbortReason.MEMORY)

    result = await evaluator.judge(execution, input_path, answer_path, time_limit=1000, memory_limit=256)

    assert result.verdict == Verdict.MEMORY_LIMIT
    assert result.memory_mb == 300


@pytest.mark.asyncio
async def test_memory_is_ignored_without_a_limit(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("42\n", memory_mb=900), input_path, answer_path,
                                   time_limit=1000)

    assert result.verdict == Verdict.ACCEPTED


@pytest.mark.asyncio
async def test_runtime_error(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("42\n", code=1), input_path, answer_path, time_limit=1000)

    assert result.verdict == Verdict.RUNTIME_ERROR
    assert result.msg == "Exit code: 1"


@pytest.mark.asyncio
async def test_stderr_counts_as_runtime_error_when_enabled(settings, executor, pool, make_execution, files):
    evaluator = ResultEvaluator(dataclasses.replace(settings, stderr_as_re=True),
                                CheckerRunner(executor, pool, settings.checker_timeout_ms))
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("42\n", stderr="debug"), input_path, answer_path,
                                   time_limit=1000)

    assert result.verdict == Verdict.RUNTIME_ERROR


@pytest.mark.asyncio
async def test_output_too_large(settings, executor, pool, make_execution, files):
    evaluator = ResultEvaluator(dataclasses.replace(settings, max_output_bytes=10),
                                CheckerRunner(executor, pool, settings.checker_timeout_ms))
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("x" * 100), input_path, answer_path, time_limit=1000)

    assert result.verdict == Verdict.RUNTIME_ERROR
    assert "Output too large" in result.msg


@pytest.mark.asyncio
async def test_evaluation_is_idempotent(evaluator, make_execution, files):
    input_path, answer_path = files("", "42\n")
    execution = make_execution("42\n")

    first = await evaluator.judge(execution, input_path, answer_path, time_limit=1000)
    second = await evaluator.judge(execution, input_path, answer_path, time_limit=1000)

    assert first == second
    assert Path(execution.stdout_path).read_text() == "42\n"


@pytest.mark.asyncio
@pytest.mark.parametrize("exit_code, verdict", [
    (0, Verdict.ACCEPTED),
    (1, Verdict.WRONG_ANSWER),
    (2, Verdict.PRESENTATION_ERROR),
    (3, Verdict.SYSTEM_ERROR),
])
async def test_checker_verdicts(evaluator, make_execution, files, write_script, exit_code, verdict):
    checker = write_script("checker.py", f"""
        import sys
        sys.stderr.write("checked " + open(sys.argv[2]).read().strip())
        sys.exit({exit_code})
    """)
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("41\n", time_ms=17), input_path, answer_path,
                                   time_limit=1000, checker_cmd=[sys.executable, checker])

    assert result.verdict == verdict
    assert "checked 41" in result.msg
    assert result.time_ms == 17


@pytest.mark.asyncio
async def test_checker_receives_input_output_answer(evaluator, make_execution, files, write_script):
    checker = write_script("checker.py", """
        import sys
        inp, out, ans = (open(p).read().split() for p in sys.argv[1:4])
        sys.exit(0 if int(out[0]) == int(inp[0]) + int(ans[0]) else 1)
    """)
    input_path, answer_path = files("40\n", "2\n")

    result = await evaluator.judge(make_execution("42\n"), input_path, answer_path,
                                   time_limit=1000, checker_cmd=[sys.executable, checker])

    assert result.verdict == Verdict.ACCEPTED


@pytest.mark.asyncio
async def test_checker_timeout_is_system_error(settings, executor, pool, make_execution, files, write_script):
    evaluator = ResultEvaluator(settings, CheckerRunner(executor, pool, timeout_ms=200))
    checker = write_script("checker.py", "import time\ntime.sleep(30)\n")
    input_path, answer_path = files("", "42\n")

    result = await evaluator.judge(make_execution("42\n"), input_path, answer_path,
                                   time_limit=1000, checker_cmd=[sys.executable, checker])

    assert result.verdict == Verdict.SYSTEM_ERROR
    assert "timeout" in result.msg.lower()
