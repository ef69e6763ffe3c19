import enum
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union


class Verdict(str, enum.Enum):
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "Wrong Answer"
    TIME_LIMIT = "Time Limit Exceeded"
    MEMORY_LIMIT = "Memory Limit Exceeded"
    RUNTIME_ERROR = "Runtime Error"
    PRESENTATION_ERROR = "Presentation Error"
    COMPILE_ERROR = "Compile Error"
    SYSTEM_ERROR = "System Error"
    REJECTED = "Rejected"
    COMPILING = "Compiling"
    JUDGING = "Judging"

    @property
    def is_running(self) -> bool:
        return self in (Verdict.COMPILING, Verdict.JUDGING)

    @property
    def abbr(self) -> str:
        return _ABBREVIATIONS[self]

    @classmethod
    def from_abbr(cls, text: str) -> Optional["Verdict"]:
        text = text.strip().upper()
        for verdict, abbr in _ABBREVIATIONS.items():
            if abbr == text:
                return verdict
        return None


_ABBREVIATIONS = {
    Verdict.ACCEPTED: "AC",
    Verdict.WRONG_ANSWER: "WA",
    Verdict.TIME_LIMIT: "TLE",
    Verdict.MEMORY_LIMIT: "MLE",
    Verdict.RUNTIME_ERROR: "RE",
    Verdict.PRESENTATION_ERROR: "PE",
    Verdict.COMPILE_ERROR: "CE",
    Verdict.SYSTEM_ERROR: "SE",
    Verdict.REJECTED: "RJ",
    Verdict.COMPILING: "CP",
    Verdict.JUDGING: "JG",
}


class AbortReason(str, enum.Enum):
    USER = "user"
    TIMEOUT = "timeout"
    MEMORY = "memory"
    PEER = "peer"  # interactive only: killed because the other side stopped


class JudgeError(Exception):
    pass


class TestcaseNotFound(JudgeError):
    pass


@dataclass(frozen=True)
class TestcaseIo:
    """Either inline text or a path handed out by the temp pool."""

    data: Optional[str] = None
    path: Optional[str] = None

    @property
    def use_file(self) -> bool:
        return self.path is not None

    def disposables(self) -> List[str]:
        return [self.path] if self.path is not None else []


@dataclass
class TestcaseResult:
    verdict: Verdict
    time_ms: Optional[float] = None
    memory_mb: Optional[float] = None
    stdout: Optional[TestcaseIo] = None
    stderr: Optional[TestcaseIo] = None
    msg: Optional[str] = None


@dataclass
class Testcase:
    id: str
    stdin: TestcaseIo = field(default_factory=TestcaseIo)
    answer: TestcaseIo = field(default_factory=TestcaseIo)
    disabled: bool = False
    result: Optional[TestcaseResult] = None

    @property
    def verdict(self) -> Optional[Verdict]:
        return self.result.verdict if self.result else None

    def clear_result(self) -> List[str]:
        """Drop the result and return the pooled paths it was holding."""
        paths = []
        if self.result is not None:
            for io in (self.result.stdout, self.result.stderr):
                if io is not None:
                    paths.extend(io.disposables())
        self.result = None
        return paths

    def update_result(self, verdict: Verdict, time_ms: Optional[float] = None,
                      memory_mb: Optional[float] = None, stdout: Optional[TestcaseIo] = None,
                      stderr: Optional[TestcaseIo] = None, msg: Optional[str] = None):
        current = self.result or TestcaseResult(verdict)
        if msg and msg.strip():
            msg = msg.strip() if not current.msg else f"{current.msg}\n{msg.strip()}"
        else:
            msg = current.msg
        self.result = TestcaseResult(
            verdict=verdict,
            time_ms=time_ms if time_ms is not None else current.time_ms,
            memory_mb=memory_mb if memory_mb is not None else current.memory_mb,
            stdout=stdout if stdout is not None else current.stdout,
            stderr=stderr if stderr is not None else current.stderr,
            msg=msg,
        )


@dataclass
class BfCompare:
    generator: str
    brute_force: str
    running: bool = False
    count: int = 0
    msg: Optional[str] = None
    found_testcase_id: Optional[str] = None


@dataclass
class Problem:
    id: str
    src: str
    time_limit: int = 1000  # ms
    memory_limit: Optional[int] = None  # MB, None means unmonitored
    checker: Optional[str] = None
    interactor: Optional[str] = None
    generator: Optional[str] = None
    brute_force: Optional[str] = None
    testcases: Dict[str, Testcase] = field(default_factory=dict)
    bf_compare: Optional[BfCompare] = None
    compile_message: Optional[str] = None

    def add_testcase(self, stdin: TestcaseIo, answer: TestcaseIo,
                     testcase_id: Optional[str] = None) -> Testcase:
        testcase = Testcase(testcase_id or uuid.uuid4().hex, stdin, answer)
        self.testcases[testcase.id] = testcase
        return testcase

    def get_testcase(self, testcase_id: str) -> Testcase:
        testcase = self.testcases.get(testcase_id)
        if testcase is None:
            raise TestcaseNotFound(f"Testcase {testcase_id} not found in problem {self.id}")
        return testcase

    def enabled_testcase_ids(self) -> List[str]:
        return [tc.id for tc in self.testcases.values() if not tc.disabled]


@dataclass(frozen=True)
class CompileData:
    src: str
    artifact: str
    run_cmd: List[str]
    hash: str
    diagnostics: str = ""
    cached: bool = False


class CompileStatus(str, enum.Enum):
    ERROR = "error"
    UNSUPPORTED = "unsupported"
    ABORTED = "aborted"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class CompileFailure:
    status: CompileStatus
    message: str


@dataclass
class CompileResult:
    """Artifacts for every unit present on the problem, plus per-unit failures."""

    solution: Optional[CompileData] = None
    checker: Optional[CompileData] = None
    interactor: Optional[CompileData] = None
    generator: Optional[CompileData] = None
    brute_force: Optional[CompileData] = None
    failures: Dict[str, CompileFailure] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.solution is not None

    @property
    def aborted(self) -> bool:
        return any(f.status == CompileStatus.ABORTED for f in self.failures.values())

    def message(self) -> str:
        return "\n".join(f"[{unit}] {failure.message}" for unit, failure in self.failures.items())


@dataclass(frozen=True)
class ExecutionContext:
    cmd: List[str]
    stdin_path: Optional[str]
    time_limit: int  # ms
    memory_limit: Optional[int] = None  # MB


@dataclass
class ExecutionData:
    code_or_signal: Union[int, str]
    stdout_path: str
    stderr_path: str
    time_ms: float
    memory_mb: Optional[float] = None
    abort_reason: Optional[AbortReason] = None

    @property
    def is_user_aborted(self) -> bool:
        return self.abort_reason == AbortReason.USER

    @property
    def is_timeout(self) -> bool:
        return self.abort_reason == AbortReason.TIMEOUT

    @property
    def is_abnormal(self) -> bool:
        return isinstance(self.code_or_signal, str) or self.code_or_signal != 0


class JudgeResult:
    def __init__(self, verdict: Verdict, time_ms: Optional[float] = None,
                 memory_mb: Optional[float] = None, msg: str = ""):
        self.verdict = verdict
        self.time_ms = time_ms
        self.memory_mb = memory_mb
        self.msg = msg

    def __eq__(self, other):
        if not isinstance(other, JudgeResult):
            return NotImplemented
        return (self.verdict, self.time_ms, self.memory_mb, self.msg) == \
            (other.verdict, other.time_ms, other.memory_mb, other.msg)

    def __repr__(self):
        return f"JudgeResult({self.verdict.value}, time={self.time_ms}, memory={self.memory_mb}, msg={self.msg!r})"
