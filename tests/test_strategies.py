"""Tests for the normal, wrapper and external execution strategies."""

import dataclasses
import json
import sys
from pathlib import Path

import pytest

from models import AbortReason, ExecutionContext, JudgeError
from strategies import (
    ExternalStrategy,
    NormalStrategy,
    WrapperStrategy,
    create_strategy,
)

FAKE_RUNNER = """
import json, shlex, subprocess, sys, time
command, stdin, stdout, stderr = sys.argv[1:5]
time_limit = int(sys.argv[sys.argv.index("--time-limit") + 1])
start = time.perf_counter()
killed = False
with open(stdin, "rb") as fi, open(stdout, "wb") as fo, open(stderr, "wb") as fe:
    proc = subprocess.Popen(shlex.split(command), stdin=fi, stdout=fo, stderr=fe)
    try:
        rc = proc.wait(timeout=time_limit / 1000)
    except subprocess.TimeoutExpired:
        proc.kill()
        rc = proc.wait()
        killed = True
print(json.dumps({
    "error": False,
    "killed": killed,
    "time": (time.perf_counter() - start) * 1000,
    "memory": 1.5,
    "exitCode": rc if rc >= 0 else 0,
    "signal": -rc if rc < 0 else 0,
}))
"""


@pytest.fixture
def stdin_file(tmp_path):
    path = tmp_path / "in.txt"
    path.write_text("7\n")
    return str(path)


def test_create_strategy_follows_settings(settings, executor, pool):
    assert isinstance(create_strategy(settings, executor, pool), NormalStrategy)
    wrapper = dataclasses.replace(settings, execution_mode="wrapper")
    assert isinstance(create_strategy(wrapper, executor, pool), WrapperStrategy)


def test_external_mode_requires_runner(settings):
    with pytest.raises(ValueError):
        dataclasses.replace(settings, execution_mode="external", external_runner=[])


@pytest.mark.asyncio
async def test_normal_strategy_adds_grace_before_kill(settings, executor, pool, write_script, stdin_file):
    script = write_script("slow.py", "import time\ntime.sleep(0.15)\nprint('ok')\n")
    strategy = NormalStrategy(executor, pool, settings)

    # 100ms limit + 300ms grace: the run finishes but is still over the limit
    data = await strategy.execute(ExecutionContext([sys.executable, script], stdin_file, 100))

    assert data.abort_reason is None
    assert data.time_ms > 100
    assert Path(data.stdout_path).read_text() == "ok\n"


@pytest.mark.skipif(sys.platform == "win32", reason="memwrap relies on getrusage")
@pytest.mark.asyncio
async def test_wrapper_reports_memory_and_exit_code(settings, executor, pool, write_script, stdin_file):
    script = write_script("prog.py", """
        import sys
        block = b"x" * (32 * 1024 * 1024)
        print(int(input()) * 6)
        sys.exit(4)
    """)
    strategy = WrapperStrategy(executor, pool, settings)

    data = await strategy.execute(ExecutionContext([sys.executable, script], stdin_file, 5000))

    assert Path(data.stdout_path).read_text() == "42\n"
    assert data.code_or_signal == 4
    assert data.memory_mb >= 32


@pytest.mark.skipif(sys.platform == "win32", reason="memwrap relies on getrusage")
@pytest.mark.asyncio
async def test_wrapper_timeout(settings, executor, pool, write_script, stdin_file):
    script = write_script("sleepy.py", "import time\ntime.sleep(30)\n")
    strategy = WrapperStrategy(executor, pool, settings)

    data = await strategy.execute(ExecutionContext([sys.executable, script], stdin_file, 100))

    assert data.abort_reason == AbortReason.TIMEOUT


@pytest.fixture
def external(settings, executor, pool, tmp_path):
    runner = tmp_path / "runner.py"
    runner.write_text(FAKE_RUNNER)
    external_settings = dataclasses.replace(
        settings, execution_mode="external",
        external_runner=[sys.executable, str(runner)],
    )
    return ExternalStrategy(executor, pool, external_settings)


@pytest.mark.asyncio
async def test_external_runner_report_is_trusted(external, write_script, stdin_file):
    script = write_script("prog.py", "print(int(input()) + 1)\n")

    data = await external.execute(ExecutionContext([sys.executable, script], stdin_file, 5000, 256))

    assert Path(data.stdout_path).read_text() == "8\n"
    assert data.code_or_signal == 0
    assert data.memory_mb == 1.5
    assert data.abort_reason is None


@pytest.mark.asyncio
async def test_external_runner_kill_is_timeout(external, write_script, stdin_file):
    script = write_script("sleepy.py", "import time\ntime.sleep(30)\n")

    data = await external.execute(ExecutionContext([sys.executable, script], stdin_file, 200))

    assert data.abort_reason == AbortReason.TIMEOUT


@pytest.mark.asyncio
async def test_external_runner_gets_whole_command_line(external, write_script, stdin_file):
    script = write_script("dir with space/prog.py", """
        import sys
        print(int(input()) * int(sys.argv[1]))
    """)

    data = await external.execute(ExecutionContext([sys.executable, script, "3"], stdin_file, 5000))

    assert Path(data.stdout_path).read_text() == "21\n"
    assert not data.is_abnormal


def _static_runner(tmp_path, settings, executor, pool, report):
    runner = tmp_path / "static_runner.py"
    runner.write_text(f"print({json.dumps(json.dumps(report))})\n")
    return ExternalStrategy(executor, pool, dataclasses.replace(
        settings, execution_mode="external", external_runner=[sys.executable, str(runner)]))


@pytest.mark.asyncio
async def test_external_runner_signal_zero_is_clean_exit(settings, executor, pool, tmp_path, stdin_file):
    strategy = _static_runner(tmp_path, settings, executor, pool, {
        "error": False, "killed": False, "time": 12, "memory": 1.5, "exitCode": 0, "signal": 0,
    })

    data = await strategy.execute(ExecutionContext(["prog"], stdin_file, 1000))

    assert data.code_or_signal == 0
    assert not data.is_abnormal
    assert data.time_ms == 12


@pytest.mark.asyncio
async def test_external_runner_signal_is_named(settings, executor, pool, tmp_path, stdin_file):
    strategy = _static_runner(tmp_path, settings, executor, pool, {
        "error": False, "killed": False, "time": 5, "memory": 1.0, "exitCode": 0, "signal": 11,
    })

    data = await strategy.execute(ExecutionContext(["prog"], stdin_file, 1000))

    assert data.code_or_signal == "SIGSEGV"
    assert data.is_abnormal


@pytest.mark.asyncio
async def test_external_runner_garbage_output(settings, executor, pool, tmp_path, stdin_file):
    runner = tmp_path / "broken.py"
    runner.write_text("print('not json')\n")
    strategy = ExternalStrategy(executor, pool, dataclasses.replace(
        settings, execution_mode="external", external_runner=[sys.executable, str(runner)]))

    with pytest.raises(JudgeError):
        await strategy.execute(ExecutionContext([str(tmp_path / "prog")], stdin_file, 1000))
