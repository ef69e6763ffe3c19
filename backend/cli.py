"""Command-line interface for the local judge."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click
from tqdm import tqdm

from config import HOST, PORT, load_settings
from models import Problem, Verdict
from runner import TestcaseRunner
from schemas import ProblemIn

VERDICT_COLORS = {
    Verdict.ACCEPTED: "green",
    Verdict.WRONG_ANSWER: "red",
    Verdict.PRESENTATION_ERROR: "red",
    Verdict.TIME_LIMIT: "yellow",
    Verdict.MEMORY_LIMIT: "yellow",
    Verdict.RUNTIME_ERROR: "magenta",
    Verdict.COMPILE_ERROR: "blue",
    Verdict.SYSTEM_ERROR: "cyan",
}


def load_problem(path: Path) -> Problem:
    data = json.loads(path.read_text(encoding="utf-8"))
    return ProblemIn(**data).to_problem(path.stem, base_dir=path.parent)


def format_verdict(verdict: Optional[Verdict]) -> str:
    if verdict is None:
        return click.style("-", dim=True)
    return click.style(f"{verdict.abbr:<3}", fg=VERDICT_COLORS.get(verdict), bold=True)


@click.group()
@click.version_option(version="0.1.0")
@click.option("--data-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Where compiled artifacts and temp files live.")
@click.option("-v", "--verbose", is_flag=True, help="Log judge internals.")
@click.pass_context
def cli(ctx, data_dir, verbose):
    """Compile, run and judge competitive programming solutions locally."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"data_dir": data_dir}


@cli.command()
@click.argument("problem_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Ignore cached artifacts.")
@click.pass_context
def run(ctx, problem_file, force):
    """Judge every enabled testcase of PROBLEM_FILE."""
    problem = load_problem(problem_file)
    runner = TestcaseRunner(load_settings(ctx.obj["data_dir"]))
    testcases = asyncio.run(runner.run_all(problem, force))

    if problem.compile_message:
        click.echo(problem.compile_message)
    passed = 0
    for idx, testcase in enumerate(testcases, 1):
        result = testcase.result
        time_text = f"{result.time_ms:.0f}ms" if result and result.time_ms is not None else "-"
        memory_text = f"{result.memory_mb:.1f}MB" if result and result.memory_mb is not None else "-"
        click.echo(f"#{idx:<3} {format_verdict(testcase.verdict)} {time_text:>8} {memory_text:>9}")
        if result and result.msg and testcase.verdict != Verdict.ACCEPTED:
            click.echo(click.style(f"     {result.msg}", dim=True))
        if testcase.verdict == Verdict.ACCEPTED:
            passed += 1
    click.echo(f"\n{passed}/{len(testcases)} passed")
    if passed != len(testcases):
        ctx.exit(1)


@cli.command()
@click.argument("problem_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--max-seconds", type=float, default=None, help="Give up after this many seconds.")
@click.option("--force", is_flag=True, help="Ignore cached artifacts.")
@click.pass_context
def stress(ctx, problem_file, max_seconds, force):
    """Compare the solution against the brute force on generated inputs."""
    problem = load_problem(problem_file)
    runner = TestcaseRunner(load_settings(ctx.obj["data_dir"]))

    async def go():
        if max_seconds:
            asyncio.get_running_loop().call_later(max_seconds, runner.stop_bf_compare, problem.id)
        with tqdm(desc="stress", unit="test") as bar:
            return await runner.start_bf_compare(problem, force, on_iteration=lambda _: bar.update(1))

    try:
        state = asyncio.run(go())
    except KeyboardInterrupt:
        click.echo("Interrupted")
        ctx.exit(130)
    click.echo(state.msg or "")
    if state.found_testcase_id:
        testcase = problem.testcases[state.found_testcase_id]
        click.secho("Input:", bold=True)
        click.echo(testcase.stdin.data if not testcase.stdin.use_file else testcase.stdin.path)
        click.secho("Expected:", bold=True)
        click.echo(testcase.answer.data if not testcase.answer.use_file else testcase.answer.path)
        stdout = testcase.result.stdout
        click.secho("Received:", bold=True)
        click.echo(stdout.data if stdout and not stdout.use_file else (stdout.path if stdout else ""))
        ctx.exit(1)


@cli.command()
@click.option("--host", default=HOST, show_default=True)
@click.option("--port", default=PORT, show_default=True, type=int)
def serve(host, port):
    """Start the HTTP API used by the editor."""
    import uvicorn
    uvicorn.run("main:app", host=host, port=port)


@cli.command()
@click.pass_context
def languages(ctx):
    """List registered languages in resolution order."""
    runner = TestcaseRunner(load_settings(ctx.obj["data_dir"]))
    for lang in runner.registry:
        kind = "compiled" if lang.needs_compile else "interpreted"
        click.echo(f"{lang.name:<12} {kind:<12} {', '.join(lang.extensions)}")


if __name__ == "__main__":
    cli()
