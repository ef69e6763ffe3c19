import logging
from typing import Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException

from config import HOST, PORT, load_settings
from models import Problem, TestcaseNotFound
from runner import TestcaseRunner
from schemas import ProblemIn, RunRequest, StopRequest, problem_view, testcase_view

logger = logging.getLogger(__name__)

app = FastAPI(title="Local Judge")

settings = load_settings()
runner = TestcaseRunner(settings)

# In-memory problem registry, lives as long as the process
problems: Dict[str, Problem] = {}


@app.on_event("startup")
async def startup():
    runner.compiler.clean_cache()


def get_problem_or_404(problem_id: str) -> Problem:
    problem = problems.get(problem_id)
    if problem is None:
        raise HTTPException(404, "Problem not found")
    return problem


# ===== Language APIs =====

@app.get("/api/languages")
async def get_languages():
    """Registered languages in resolution order"""
    return [
        {
            "name": lang.name,
            "extensions": list(lang.extensions),
            "compiled": lang.needs_compile,
        }
        for lang in runner.registry
    ]


# ===== Problem APIs =====

@app.put("/api/problems/{problem_id}")
async def load_problem(problem_id: str, body: ProblemIn):
    """Load (or replace) a problem definition so it can be judged"""
    if runner.registry.resolve(body.src) is None:
        raise HTTPException(400, f"Unsupported language for {body.src}")
    old = problems.get(problem_id)
    if old is not None:
        runner.stop(problem_id)
        runner.stop_bf_compare(problem_id)
    problem = body.to_problem(problem_id)
    problems[problem_id] = problem
    return problem_view(problem)


@app.get("/api/problems/{problem_id}")
async def get_problem(problem_id: str):
    return problem_view(get_problem_or_404(problem_id))


# ===== Judge APIs =====

@app.post("/api/problems/{problem_id}/run")
async def run_all(problem_id: str, background_tasks: BackgroundTasks,
                  body: Optional[RunRequest] = None):
    """Judge every enabled testcase in the background"""
    problem = get_problem_or_404(problem_id)
    force = body.force_recompile if body else False
    background_tasks.add_task(runner.run_all, problem, force)
    return {"problem_id": problem_id, "testcases": problem.enabled_testcase_ids(), "status": "started"}


@app.post("/api/problems/{problem_id}/testcases/{testcase_id}/run")
async def run_single(problem_id: str, testcase_id: str, background_tasks: BackgroundTasks,
                     body: Optional[RunRequest] = None):
    problem = get_problem_or_404(problem_id)
    try:
        problem.get_testcase(testcase_id)
    except TestcaseNotFound as e:
        raise HTTPException(404, str(e))
    force = body.force_recompile if body else False
    background_tasks.add_task(runner.run_single, problem, testcase_id, force)
    return {"problem_id": problem_id, "testcase_id": testcase_id, "status": "started"}


@app.get("/api/problems/{problem_id}/testcases/{testcase_id}")
async def get_testcase(problem_id: str, testcase_id: str):
    problem = get_problem_or_404(problem_id)
    try:
        return testcase_view(problem.get_testcase(testcase_id), with_io=True)
    except TestcaseNotFound as e:
        raise HTTPException(404, str(e))


@app.post("/api/problems/{problem_id}/stop")
async def stop(problem_id: str, body: Optional[StopRequest] = None):
    """Stop a run; with a testcase_id only that testcase is rejected"""
    get_problem_or_404(problem_id)
    testcase_id = body.testcase_id if body else None
    return {"stopped": runner.stop(problem_id, testcase_id)}


# ===== Brute-force comparison APIs =====

@app.post("/api/problems/{problem_id}/bf-compare")
async def start_bf_compare(problem_id: str, background_tasks: BackgroundTasks,
                           body: Optional[RunRequest] = None):
    problem = get_problem_or_404(problem_id)
    if not problem.generator or not problem.brute_force:
        raise HTTPException(400, "Both generator and brute_force are required")
    if problem.interactor:
        raise HTTPException(400, "Brute force comparison does not support interactive problems")
    force = body.force_recompile if body else False
    background_tasks.add_task(runner.start_bf_compare, problem, force)
    return {"problem_id": problem_id, "status": "started"}


@app.delete("/api/problems/{problem_id}/bf-compare")
async def stop_bf_compare(problem_id: str):
    get_problem_or_404(problem_id)
    return {"stopped": runner.stop_bf_compare(problem_id)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
