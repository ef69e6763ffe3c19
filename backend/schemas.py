from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from config import DEFAULT_TIME_LIMIT
from models import Problem, Testcase, TestcaseIo
from tcio import read_io


class TestcaseIn(BaseModel):
    id: Optional[str] = None
    input: Optional[str] = None
    answer: Optional[str] = None
    input_file: Optional[str] = None
    answer_file: Optional[str] = None
    disabled: bool = False


class ProblemIn(BaseModel):
    """Problem definition as loaded from the editor or a problem JSON file."""

    src: str
    time_limit: int = Field(DEFAULT_TIME_LIMIT, gt=0)
    memory_limit: Optional[int] = Field(None, gt=0)
    checker: Optional[str] = None
    interactor: Optional[str] = None
    generator: Optional[str] = None
    brute_force: Optional[str] = None
    testcases: List[TestcaseIn] = Field(default_factory=list)

    def to_problem(self, problem_id: str, base_dir: Optional[Path] = None) -> Problem:
        """Build a Problem, resolving relative paths against `base_dir`."""

        def resolve(path: Optional[str]) -> Optional[str]:
            if not path:
                return None
            if base_dir is not None and not Path(path).is_absolute():
                return str(Path(base_dir) / path)
            return path

        problem = Problem(
            id=problem_id,
            src=resolve(self.src),
            time_limit=self.time_limit,
            memory_limit=self.memory_limit,
            checker=resolve(self.checker),
            interactor=resolve(self.interactor),
            generator=resolve(self.generator),
            brute_force=resolve(self.brute_force),
        )
        for tc in self.testcases:
            stdin = TestcaseIo(path=resolve(tc.input_file)) if tc.input_file else TestcaseIo(data=tc.input or "")
            answer = TestcaseIo(path=resolve(tc.answer_file)) if tc.answer_file else TestcaseIo(data=tc.answer or "")
            testcase = problem.add_testcase(stdin, answer, tc.id)
            testcase.disabled = tc.disabled
        return problem


class StopRequest(BaseModel):
    testcase_id: Optional[str] = None


class RunRequest(BaseModel):
    force_recompile: bool = False


def io_view(io: Optional[TestcaseIo]) -> Optional[dict]:
    if io is None:
        return None
    if io.use_file:
        return {"path": io.path}
    return {"data": io.data}


def testcase_view(testcase: Testcase, with_io: bool = False) -> dict:
    result = testcase.result
    view = {
        "id": testcase.id,
        "disabled": testcase.disabled,
        "verdict": result.verdict.value if result else None,
        "time_ms": result.time_ms if result else None,
        "memory_mb": result.memory_mb if result else None,
        "msg": result.msg if result else None,
        "stdout": io_view(result.stdout) if result else None,
        "stderr": io_view(result.stderr) if result else None,
    }
    if with_io:
        view["input"] = read_io(testcase.stdin) if not testcase.stdin.use_file else None
        view["answer"] = read_io(testcase.answer) if not testcase.answer.use_file else None
    return view


def problem_view(problem: Problem) -> dict:
    bf = problem.bf_compare
    return {
        "id": problem.id,
        "src": problem.src,
        "time_limit": problem.time_limit,
        "memory_limit": problem.memory_limit,
        "checker": problem.checker,
        "interactor": problem.interactor,
        "generator": problem.generator,
        "brute_force": problem.brute_force,
        "compile_message": problem.compile_message,
        "testcases": [testcase_view(tc, with_io=True) for tc in problem.testcases.values()],
        "bf_compare": None if bf is None else {
            "running": bf.running,
            "count": bf.count,
            "msg": bf.msg,
            "found_testcase_id": bf.found_testcase_id,
        },
    }
