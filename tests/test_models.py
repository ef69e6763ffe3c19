import pytest

import models
from models import BfCompare, Problem, Verdict


def test_verdict_abbreviations_round_trip():
    assert Verdict.from_abbr("wa") == Verdict.WRONG_ANSWER
    assert Verdict.TIME_LIMIT.abbr == "TLE"
    assert Verdict.from_abbr("nope") is None


def test_running_states():
    assert Verdict.COMPILING.is_running
    assert Verdict.JUDGING.is_running
    assert not Verdict.ACCEPTED.is_running


def test_update_result_merges_fields_and_messages():
    testcase = models.Testcase("t1")
    testcase.update_result(Verdict.JUDGING, msg="first")
    testcase.update_result(Verdict.WRONG_ANSWER, time_ms=12.5, msg="  second  ")

    assert testcase.verdict == Verdict.WRONG_ANSWER
    assert testcase.result.time_ms == 12.5
    assert testcase.result.msg == "first\nsecond"


def test_clear_result_returns_pooled_paths():
    testcase = models.Testcase("t1")
    testcase.update_result(Verdict.ACCEPTED,
                           stdout=models.TestcaseIo(path="/tmp/out"),
                           stderr=models.TestcaseIo(data=""))

    assert testcase.clear_result() == ["/tmp/out"]
    assert testcase.result is None


def test_problem_testcases():
    problem = Problem("p", "sol.py")
    a = problem.add_testcase(models.TestcaseIo(data="1"), models.TestcaseIo(data="1"))
    b = problem.add_testcase(models.TestcaseIo(data="2"), models.TestcaseIo(data="2"), "b")
    b.disabled = True

    assert problem.get_testcase("b") is b
    assert problem.enabled_testcase_ids() == [a.id]
    with pytest.raises(models.TestcaseNotFound):
        problem.get_testcase("missing")


def test_bf_compare_defaults():
    state = BfCompare("gen.py", "brute.py")

    assert not state.running
    assert state.count == 0
    assert state.found_testcase_id is None
