import asyncio
import hashlib
import logging
import uuid
from pathlib import Path
from typing import Dict, Optional, Union

from cancellation import CancellationToken
from config import Settings
from evaluator import describe_exit
from executor import ProcessExecutor
from languages import LanguageRegistry, LanguageStrategy
from models import CompileData, CompileFailure, CompileResult, CompileStatus, Problem
from tcio import read_text
from temp_pool import TempPool

logger = logging.getLogger(__name__)

UNITS = ("solution", "checker", "interactor", "generator", "brute_force")

Outcome = Union[CompileData, CompileFailure]


class _SharedBuild:
    """One compiler process and everyone waiting on it."""

    def __init__(self):
        self.token = CancellationToken()
        self.future: Optional[asyncio.Future] = None
        self.waiters = 0


class Compiler:
    """Builds every compilable unit of a problem, with a content-addressed cache.

    The cache key is md5(source bytes + compile template + flags); artifacts
    live at cache_dir/{key}{suffix}. Two compiles of the same key in flight at
    once share one compiler process.
    """

    def __init__(self, registry: LanguageRegistry, executor: ProcessExecutor,
                 pool: TempPool, settings: Settings):
        self.registry = registry
        self.executor = executor
        self.pool = pool
        self.settings = settings
        self.cache_dir = Path(settings.cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._inflight: Dict[str, _SharedBuild] = {}

    async def compile(self, problem: Problem, force_recompile: bool = False,
                      token: Optional[CancellationToken] = None) -> CompileResult:
        sources = {
            "solution": problem.src,
            "checker": problem.checker,
            "interactor": problem.interactor,
            "generator": problem.generator,
            "brute_force": problem.brute_force,
        }
        units = [unit for unit in UNITS if sources[unit]]
        outcomes = await asyncio.gather(*(
            self.compile_file(sources[unit], force_recompile, token, prebuilt_ok=unit != "solution")
            for unit in units
        ))

        result = CompileResult()
        for unit, outcome in zip(units, outcomes):
            if isinstance(outcome, CompileFailure):
                result.failures[unit] = outcome
            else:
                setattr(result, unit, outcome)
        problem.compile_message = result.message() or (
            result.solution.diagnostics if result.solution else None) or None
        return result

    async def compile_file(self, src: str, force_recompile: bool = False,
                           token: Optional[CancellationToken] = None,
                           prebuilt_ok: bool = False) -> Outcome:
        language = self.registry.resolve(src)
        if language is None:
            if prebuilt_ok:
                return CompileData(src=src, artifact=src, run_cmd=[src], hash="", cached=True)
            return CompileFailure(CompileStatus.UNSUPPORTED,
                                  f"Unsupported language for {Path(src).name}")
        try:
            source = Path(src).read_bytes()
        except FileNotFoundError:
            return CompileFailure(CompileStatus.ERROR, f"Source file not found: {src}")

        code_hash = hashlib.md5(source + language.cache_key().encode()).hexdigest()
        if not language.needs_compile:
            return CompileData(src=src, artifact=src, run_cmd=language.run_command(src),
                               hash=code_hash, cached=True)

        cached_exe = self.cache_dir / f"{code_hash}{language.suffix}"
        if cached_exe.exists() and not force_recompile:
            logger.info(f"[Cache] Using cached artifact {code_hash[:8]} for {Path(src).name}")
            return CompileData(src=src, artifact=str(cached_exe),
                               run_cmd=language.run_command(str(cached_exe)),
                               hash=code_hash, cached=True)

        build = self._inflight.get(code_hash)
        if build is None or build.token.cancelled:
            build = _SharedBuild()
            build.future = asyncio.ensure_future(
                self._build(src, language, code_hash, cached_exe, build.token))
            self._inflight[code_hash] = build
            build.future.add_done_callback(lambda _, b=build: self._forget(code_hash, b))
        else:
            logger.info(f"[Cache] Joining in-flight compile {code_hash[:8]}")
        return await self._join(build, token)

    def _forget(self, code_hash: str, build: "_SharedBuild"):
        if self._inflight.get(code_hash) is build:
            del self._inflight[code_hash]

    async def _join(self, build: "_SharedBuild", token: Optional[CancellationToken]) -> Outcome:
        """Wait for a shared build; only this caller's token can abort its wait.

        The build itself is killed once every waiter has given up on it.
        """
        build.waiters += 1
        try:
            if token is None:
                return await asyncio.shield(build.future)
            cancel_task = asyncio.ensure_future(token.wait())
            try:
                done, _ = await asyncio.wait({build.future, cancel_task},
                                             return_when=asyncio.FIRST_COMPLETED)
            finally:
                cancel_task.cancel()
            if build.future in done:
                return build.future.result()
            return CompileFailure(CompileStatus.ABORTED, "Compilation aborted")
        finally:
            build.waiters -= 1
            if build.waiters == 0 and not build.future.done():
                logger.info("[Compile] Every caller cancelled, killing compiler")
                build.token.cancel("abandoned")

    async def _build(self, src: str, language: LanguageStrategy, code_hash: str,
                     cached_exe: Path, token: Optional[CancellationToken]) -> Outcome:
        temp_exe = self.cache_dir / f"{code_hash}_{uuid.uuid4().hex[:8]}.tmp{language.suffix}"
        cmd = language.compile_command(src=src, out=str(temp_exe))
        logger.info(f"[Compile] {' '.join(cmd)}")
        try:
            try:
                data = await self.executor.execute(
                    cmd, token=token, timeout_ms=self.settings.compile_timeout_ms,
                    cwd=str(Path(src).parent) or None,
                )
            except OSError as e:
                return CompileFailure(CompileStatus.ERROR, f"Cannot run compiler: {e}")
            try:
                diagnostics = (read_text(data.stdout_path) + read_text(data.stderr_path)).strip()
            finally:
                self.pool.dispose([data.stdout_path, data.stderr_path])

            if data.is_user_aborted:
                return CompileFailure(CompileStatus.ABORTED, "Compilation aborted")
            if data.is_timeout:
                return CompileFailure(CompileStatus.TIMEOUT, "Compilation timeout")
            if data.is_abnormal:
                message = diagnostics or describe_exit(data.code_or_signal)
                return CompileFailure(CompileStatus.ERROR, message[:2000])
            if not temp_exe.exists():
                return CompileFailure(CompileStatus.ERROR, "Compiler produced no output file")

            # atomic rename: the cache key never points at a partial file
            temp_exe.replace(cached_exe)
            logger.info(f"[Cache] Cached artifact {code_hash[:8]} for {Path(src).name}")
            return CompileData(src=src, artifact=str(cached_exe),
                               run_cmd=language.run_command(str(cached_exe)),
                               hash=code_hash, diagnostics=diagnostics, cached=False)
        finally:
            if temp_exe.exists():
                temp_exe.unlink()

    def clean_cache(self) -> int:
        """Remove temp files left behind by interrupted compiles."""
        cleaned = 0
        for file in self.cache_dir.glob("*.tmp*"):
            try:
                file.unlink()
                cleaned += 1
            except OSError as e:
                logger.warning(f"[Cache] Cannot remove {file.name}: {e}")
        if cleaned:
            logger.info(f"[Cache] Cleaned {cleaned} tmp files")
        return cleaned
