import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("JUDGE_DATA_DIR", str(BASE_DIR / "data")))
EXE_CACHE_DIR = DATA_DIR / "exe_cache"
TEMP_DIR = DATA_DIR / "tmp"

_PYTHON = shlex.quote(sys.executable)

# Language table. Order matters: the first language claiming an extension wins.
# Compile templates understand {src} {out} {flags}; run templates {exe} {args}.
LANGUAGES = {
    "c++": {
        "extensions": ["cpp", "cc", "cxx", "c++"],
        "compile": "g++ {flags} {src} -o {out}",
        "run": "{exe} {args}",
        "flags": "-O2 -std=c++17 -DONLINE_JUDGE",
        "suffix": ".exe" if sys.platform == "win32" else "",
    },
    "c": {
        "extensions": ["c"],
        "compile": "gcc {flags} {src} -o {out} -lm",
        "run": "{exe} {args}",
        "flags": "-O2 -std=c11 -DONLINE_JUDGE",
        "suffix": ".exe" if sys.platform == "win32" else "",
    },
    "rust": {
        "extensions": ["rs"],
        "compile": "rustc {flags} {src} -o {out}",
        "run": "{exe} {args}",
        "flags": "-O",
        "suffix": ".exe" if sys.platform == "win32" else "",
    },
    "python": {
        "extensions": ["py"],
        "compile": None,
        "run": _PYTHON + " {args} {exe}",
        "flags": "",
    },
    "javascript": {
        "extensions": ["js", "mjs"],
        "compile": None,
        "run": "node {args} {exe}",
        "flags": "",
    },
}

# Judge settings
MAX_CONCURRENT_JUDGES = int(os.getenv("JUDGE_MAX_CONCURRENT", "4"))
DEFAULT_TIME_LIMIT = 1000  # ms
DEFAULT_MEMORY_LIMIT = 256  # MB
COMPILE_TIMEOUT_MS = int(os.getenv("JUDGE_COMPILE_TIMEOUT_MS", "30000"))
CHECKER_TIMEOUT_MS = int(os.getenv("JUDGE_CHECKER_TIMEOUT_MS", "10000"))
TIME_GRACE_MS = int(os.getenv("JUDGE_TIME_GRACE_MS", "500"))  # added before hard kill, never reported
INTERACTOR_GRACE_MS = int(os.getenv("JUDGE_INTERACTOR_GRACE_MS", "1000"))
MEMORY_POLL_INTERVAL_MS = 10
MAX_OUTPUT_BYTES = 10 * 1024 * 1024  # 10MB
MAX_INLINE_BYTES = 64 * 1024

# normal | wrapper | external
EXECUTION_MODE = os.getenv("JUDGE_EXECUTION_MODE", "normal")
EXTERNAL_RUNNER = os.getenv("JUDGE_EXTERNAL_RUNNER", "")

# lines | tokens | exact
COMPARE_MODE = os.getenv("JUDGE_COMPARE_MODE", "lines")
STDERR_AS_RE = os.getenv("JUDGE_STDERR_AS_RE", "0") == "1"

# Brute-force comparison
BF_GENERATOR_TIME_LIMIT_MS = int(os.getenv("JUDGE_BF_GENERATOR_TIME_LIMIT_MS", "5000"))
BF_SEED_START = 1

# HTTP server
HOST = os.getenv("JUDGE_HOST", "127.0.0.1")
PORT = int(os.getenv("JUDGE_PORT", "8000"))

EXECUTION_MODES = ("normal", "wrapper", "external")
COMPARE_MODES = ("lines", "tokens", "exact")


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the judge configuration, resolved once per run."""

    cache_dir: Path = EXE_CACHE_DIR
    temp_dir: Path = TEMP_DIR
    languages: Dict[str, dict] = field(default_factory=lambda: dict(LANGUAGES))
    max_concurrent_judges: int = MAX_CONCURRENT_JUDGES
    compile_timeout_ms: int = COMPILE_TIMEOUT_MS
    checker_timeout_ms: int = CHECKER_TIMEOUT_MS
    time_grace_ms: int = TIME_GRACE_MS
    interactor_grace_ms: int = INTERACTOR_GRACE_MS
    memory_poll_interval_ms: int = MEMORY_POLL_INTERVAL_MS
    max_output_bytes: int = MAX_OUTPUT_BYTES
    max_inline_bytes: int = MAX_INLINE_BYTES
    execution_mode: str = EXECUTION_MODE
    external_runner: List[str] = field(default_factory=lambda: shlex.split(EXTERNAL_RUNNER))
    compare_mode: str = COMPARE_MODE
    stderr_as_re: bool = STDERR_AS_RE
    bf_generator_time_limit_ms: int = BF_GENERATOR_TIME_LIMIT_MS
    bf_seed_start: int = BF_SEED_START

    def __post_init__(self):
        if self.execution_mode not in EXECUTION_MODES:
            raise ValueError(f"Unknown execution mode: {self.execution_mode}")
        if self.compare_mode not in COMPARE_MODES:
            raise ValueError(f"Unknown compare mode: {self.compare_mode}")
        if self.execution_mode == "external" and not self.external_runner:
            raise ValueError("External execution mode requires JUDGE_EXTERNAL_RUNNER")


def load_settings(data_dir: Optional[Path] = None, **overrides) -> Settings:
    """Build a Settings snapshot and make sure its directories exist."""
    if data_dir is not None:
        data_dir = Path(data_dir)
        overrides.setdefault("cache_dir", data_dir / "exe_cache")
        overrides.setdefault("temp_dir", data_dir / "tmp")
    settings = Settings(**overrides)
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    settings.temp_dir.mkdir(parents=True, exist_ok=True)
    return settings
