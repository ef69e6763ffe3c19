import os
import shlex
import sys
import tempfile
import textwrap
from pathlib import Path

import pytest

# main.py builds its settings at import time
os.environ.setdefault("JUDGE_DATA_DIR", tempfile.mkdtemp(prefix="judge-tests-"))

import config  # noqa: E402
from config import load_settings  # noqa: E402
from executor import ProcessExecutor  # noqa: E402
from temp_pool import TempPool  # noqa: E402

PYTHON = shlex.quote(sys.executable)

FAKE_COMPILER = """
import shutil
import sys
import time
from pathlib import Path

src, out = sys.argv[1], sys.argv[2]
with open(Path(__file__).with_name("fakecc.count"), "a") as f:
    f.write(" ".join(sys.argv[3:]) + "\\n")
text = open(src).read()
if "SLOW_COMPILE" in text:
    time.sleep(5)
if "COMPILE_ERROR" in text:
    sys.stderr.write("error: expected ';' before '}' token\\n")
    sys.exit(1)
shutil.copy(src, out)
"""


@pytest.fixture
def write_script(tmp_path):
    """Write a dedented source file under tmp_path and return its path as str."""

    def write(name, body):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(body).lstrip())
        return str(path)

    return write


@pytest.fixture
def fake_compiler(tmp_path):
    compiler_dir = tmp_path / "toolchain"
    compiler_dir.mkdir()
    script = compiler_dir / "fakecc.py"
    script.write_text(FAKE_COMPILER)
    return script


@pytest.fixture
def compile_count(fake_compiler):
    """Number of times the fake compiler has been invoked."""
    counter = fake_compiler.with_name("fakecc.count")

    def count():
        if not counter.exists():
            return 0
        return len(counter.read_text().splitlines())

    return count


@pytest.fixture
def languages(fake_compiler):
    # ".fk" files are "compiled" by copying them, then run with python
    table = {
        "fake": {
            "extensions": ["fk"],
            "compile": f"{PYTHON} {shlex.quote(str(fake_compiler))} {{src}} {{out}} {{flags}}",
            "run": f"{PYTHON} {{exe}}",
            "flags": "-O2",
        },
    }
    table.update(config.LANGUAGES)
    return table


@pytest.fixture
def settings(tmp_path, languages):
    return load_settings(
        tmp_path / "data",
        languages=languages,
        time_grace_ms=300,
        interactor_grace_ms=500,
        compile_timeout_ms=10000,
        checker_timeout_ms=5000,
        bf_generator_time_limit_ms=5000,
        execution_mode="normal",
        compare_mode="lines",
        stderr_as_re=False,
    )


@pytest.fixture
def pool(settings):
    return TempPool(settings.temp_dir)


@pytest.fixture
def executor(pool, settings):
    return ProcessExecutor(pool, settings.memory_poll_interval_ms, settings.time_grace_ms)