import logging
from typing import Callable

from models import Problem, Testcase

logger = logging.getLogger(__name__)


class EventSink:
    """Outbound channel for state changes. The default drops everything."""

    def testcase_updated(self, problem: Problem, testcase: Testcase):
        pass

    def problem_updated(self, problem: Problem):
        pass

    def bf_compare_updated(self, problem: Problem):
        pass


class CallbackSink(EventSink):
    """Forwards every change as (event_name, problem, testcase_or_None)."""

    def __init__(self, callback: Callable):
        self.callback = callback

    def _emit(self, name, problem, testcase=None):
        try:
            self.callback(name, problem, testcase)
        except Exception:
            logger.exception(f"[Events] Subscriber failed on {name}")

    def testcase_updated(self, problem, testcase):
        self._emit("testcase", problem, testcase)

    def problem_updated(self, problem):
        self._emit("problem", problem)

    def bf_compare_updated(self, problem):
        self._emit("bf_compare", problem)
