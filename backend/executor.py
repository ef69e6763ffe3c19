import asyncio
import contextlib
import logging
import os
import signal
import subprocess
import time
from typing import Dict, List, Optional, Tuple, Union

import psutil

from cancellation import CancellationToken
from models import AbortReason, ExecutionData
from temp_pool import TempPool

logger = logging.getLogger(__name__)

PIPE_CHUNK = 64 * 1024


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"


def exit_status(returncode: int) -> Union[int, str]:
    """Exit code, or the signal name for a process killed by a signal."""
    if returncode is not None and returncode < 0 and os.name != "nt":
        return signal_name(-returncode)
    return returncode


def kill_tree(pid: int) -> List[psutil.Process]:
    """Kill a process and every descendant. Returns the processes signalled."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []
    try:
        procs = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        procs = []
    procs.append(parent)
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    return procs


def kill_group(pgid: int):
    """Kill whatever is left in a process group once its leader has exited.

    Children are started in their own session, so the group id is the pid.
    """
    if os.name == "nt":
        return
    try:
        os.killpg(pgid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def tree_rss(pid: int) -> int:
    """Resident set size of a process and its descendants, in bytes."""
    parent = psutil.Process(pid)
    total = parent.memory_info().rss
    for child in parent.children(recursive=True):
        try:
            total += child.memory_info().rss
        except psutil.NoSuchProcess:
            pass
    return total


class _MemoryProbe:
    def __init__(self):
        self.peak_bytes = 0

    @property
    def peak_mb(self) -> Optional[float]:
        if not self.peak_bytes:
            return None
        return round(self.peak_bytes / (1024 * 1024), 2)


class _KillSwitch:
    """Lets one supervisor ask another to abort its process."""

    def __init__(self):
        self.event = asyncio.Event()
        self.reason: Optional[AbortReason] = None

    def trigger(self, reason: AbortReason):
        if not self.event.is_set():
            self.reason = reason
            self.event.set()


class ProcessExecutor:
    """Spawns processes and supervises them until exit or abort.

    Every abort (user cancellation, timeout, memory ceiling) goes through the
    same path: the whole process tree is killed and the reason is recorded on
    the returned ExecutionData. Stdout and stderr always go to pooled files.
    """

    def __init__(self, pool: TempPool, memory_poll_interval_ms: int = 10, kill_grace_ms: int = 500):
        self.pool = pool
        self.memory_poll_interval = memory_poll_interval_ms / 1000.0
        self.kill_grace = kill_grace_ms / 1000.0

    async def execute(self, cmd: List[str], token: Optional[CancellationToken] = None,
                      timeout_ms: Optional[float] = None, stdin_path: Optional[str] = None,
                      memory_limit_mb: Optional[float] = None, cwd: Optional[str] = None,
                      env: Optional[Dict[str, str]] = None, soft_kill: bool = False) -> ExecutionData:
        """Run `cmd` to completion.

        With `soft_kill`, stdin is a pipe and an abort first writes `k` to it,
        giving the process `kill_grace_ms` to stop on its own. Raises OSError
        when the process cannot be spawned.
        """
        stdout_path = self.pool.create()
        stderr_path = self.pool.create()
        try:
            with open(stdout_path, "wb") as fout, open(stderr_path, "wb") as ferr, \
                    _open_stdin(stdin_path, soft_kill) as fin:
                start_time = time.perf_counter()
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=fin,
                    stdout=fout,
                    stderr=ferr,
                    cwd=cwd,
                    env=_merge_env(env),
                    **_spawn_kwargs(),
                )
                probe = _MemoryProbe()
                reason = await self._supervise(
                    process, token, timeout_ms, memory_limit_mb, probe,
                    soft_kill=soft_kill,
                )
                elapsed_ms = (time.perf_counter() - start_time) * 1000
        except OSError:
            self.pool.dispose([stdout_path, stderr_path])
            raise

        return ExecutionData(
            code_or_signal=exit_status(process.returncode),
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            time_ms=round(elapsed_ms, 2),
            memory_mb=probe.peak_mb,
            abort_reason=reason,
        )

    async def execute_interactive(self, solution_cmd: List[str], interactor_cmd: List[str],
                                  token: Optional[CancellationToken] = None,
                                  timeout_ms: Optional[float] = None, grace_ms: float = 1000,
                                  memory_limit_mb: Optional[float] = None,
                                  cwd: Optional[str] = None) -> Tuple[ExecutionData, ExecutionData]:
        """Run a solution and an interactor wired stdout-to-stdin both ways.

        Each side's stdout is copied into its own pooled file on the way. When
        one side exits, the other sees EOF and gets `grace_ms` to follow before
        it is killed with AbortReason.PEER. A side that breaks a limit takes
        the other one down the same way.
        """
        paths = {name: self.pool.create() for name in ("sol_out", "sol_err", "int_out", "int_err")}
        files = {}
        try:
            for name, path in paths.items():
                files[name] = open(path, "wb")
            start_time = time.perf_counter()
            solution = await asyncio.create_subprocess_exec(
                *solution_cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=files["sol_err"],
                cwd=cwd,
                **_spawn_kwargs(),
            )
            try:
                interactor = await asyncio.create_subprocess_exec(
                    *interactor_cmd,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=files["int_err"],
                    cwd=cwd,
                    **_spawn_kwargs(),
                )
            except OSError:
                kill_tree(solution.pid)
                await solution.wait()
                raise

            pumps = [
                asyncio.ensure_future(_pump(solution.stdout, interactor.stdin, files["sol_out"])),
                asyncio.ensure_future(_pump(interactor.stdout, solution.stdin, files["int_out"])),
            ]
            sol_probe, int_probe = _MemoryProbe(), _MemoryProbe()
            sol_switch, int_switch = _KillSwitch(), _KillSwitch()
            sol_task = asyncio.ensure_future(self._supervise(
                solution, token, timeout_ms, memory_limit_mb, sol_probe, kill_switch=sol_switch))
            int_task = asyncio.ensure_future(self._supervise(
                interactor, token, timeout_ms, None, int_probe, kill_switch=int_switch))
            finished = {}
            sol_task.add_done_callback(lambda _: finished.setdefault("sol", time.perf_counter()))
            int_task.add_done_callback(lambda _: finished.setdefault("int", time.perf_counter()))

            done, _ = await asyncio.wait({sol_task, int_task}, return_when=asyncio.FIRST_COMPLETED)
            if len(done) == 1:
                first, other, other_switch = (
                    (sol_task, int_task, int_switch) if sol_task in done
                    else (int_task, sol_task, sol_switch)
                )
                if first.result() is not None:
                    other_switch.trigger(AbortReason.PEER)
                else:
                    try:
                        await asyncio.wait_for(asyncio.shield(other), timeout=grace_ms / 1000.0)
                    except asyncio.TimeoutError:
                        logger.info("[Interactive] Peer did not exit within grace period, killing")
                        other_switch.trigger(AbortReason.PEER)
            sol_reason = await sol_task
            int_reason = await int_task
            sol_ms = (finished.get("sol", time.perf_counter()) - start_time) * 1000
            int_ms = (finished.get("int", time.perf_counter()) - start_time) * 1000

            _, stuck = await asyncio.wait(pumps, timeout=grace_ms / 1000.0)
            for pump in stuck:
                pump.cancel()
            for outcome in await asyncio.gather(*pumps, return_exceptions=True):
                if isinstance(outcome, Exception):
                    logger.debug(f"[Interactive] Pipe copy failed: {outcome!r}")
        except OSError:
            for f in files.values():
                f.close()
            self.pool.dispose(list(paths.values()))
            raise
        finally:
            for f in files.values():
                f.close()

        solution_data = ExecutionData(
            code_or_signal=exit_status(solution.returncode),
            stdout_path=paths["sol_out"],
            stderr_path=paths["sol_err"],
            time_ms=round(sol_ms, 2),
            memory_mb=sol_probe.peak_mb,
            abort_reason=sol_reason,
        )
        interactor_data = ExecutionData(
            code_or_signal=exit_status(interactor.returncode),
            stdout_path=paths["int_out"],
            stderr_path=paths["int_err"],
            time_ms=round(int_ms, 2),
            memory_mb=int_probe.peak_mb,
            abort_reason=int_reason,
        )
        return solution_data, interactor_data

    async def _supervise(self, process, token, timeout_ms, memory_limit_mb, probe: _MemoryProbe,
                         kill_switch: Optional[_KillSwitch] = None,
                         soft_kill: bool = False) -> Optional[AbortReason]:
        """Wait for `process`, killing it on the first abort condition."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0 if timeout_ms else None

        wait_task = asyncio.ensure_future(process.wait())
        cancel_task = asyncio.ensure_future(token.wait()) if token is not None else None
        switch_task = asyncio.ensure_future(kill_switch.event.wait()) if kill_switch is not None else None
        memory_task = asyncio.ensure_future(self._watch_memory(process.pid, memory_limit_mb, probe))
        watchers = {t for t in (wait_task, cancel_task, switch_task, memory_task) if t is not None}

        reason = None
        try:
            while True:
                remaining = None if deadline is None else max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait(watchers, timeout=remaining,
                                             return_when=asyncio.FIRST_COMPLETED)
                if wait_task in done:
                    break
                if cancel_task in done:
                    reason = AbortReason.USER
                elif switch_task in done:
                    reason = kill_switch.reason
                elif memory_task in done:
                    if not memory_task.result():
                        watchers.discard(memory_task)
                        continue
                    reason = AbortReason.MEMORY
                else:
                    reason = AbortReason.TIMEOUT
                break
        finally:
            for task in (cancel_task, switch_task, memory_task):
                if task is not None and not task.done():
                    task.cancel()

        if reason is not None:
            logger.info(f"[Executor] Aborting pid {process.pid}: {reason.value}")
            if soft_kill and process.stdin is not None:
                await self._soft_kill(process, wait_task)
            if not wait_task.done():
                procs = kill_tree(process.pid)
                await wait_task
                await loop.run_in_executor(None, lambda: psutil.wait_procs(procs, timeout=1))
        else:
            await wait_task
        # children left in the session survive their leader otherwise
        kill_group(process.pid)
        return reason

    async def _soft_kill(self, process, wait_task):
        try:
            process.stdin.write(b"k")
            await process.stdin.drain()
            process.stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            return
        try:
            await asyncio.wait_for(asyncio.shield(wait_task), timeout=self.kill_grace)
        except asyncio.TimeoutError:
            pass

    async def _watch_memory(self, pid: int, limit_mb: Optional[float], probe: _MemoryProbe) -> bool:
        """Sample the tree's RSS. Returns True once the limit is crossed."""
        limit_bytes = limit_mb * 1024 * 1024 if limit_mb else None
        while True:
            try:
                rss = await asyncio.get_running_loop().run_in_executor(None, tree_rss, pid)
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                return False
            except psutil.AccessDenied:
                logger.debug(f"[Executor] Cannot read memory of pid {pid}")
                return False
            probe.peak_bytes = max(probe.peak_bytes, rss)
            if limit_bytes is not None and rss > limit_bytes:
                return True
            await asyncio.sleep(self.memory_poll_interval)


async def _pump(reader: asyncio.StreamReader, writer: Optional[asyncio.StreamWriter], tee):
    """Copy reader to writer and tee until EOF, then close the writer."""
    try:
        while True:
            chunk = await reader.read(PIPE_CHUNK)
            if not chunk:
                break
            tee.write(chunk)
            if writer is None:
                continue
            try:
                writer.write(chunk)
                await writer.drain()
            except (BrokenPipeError, ConnectionResetError):
                writer = None
    finally:
        if writer is not None:
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                writer.close()


@contextlib.contextmanager
def _open_stdin(path: Optional[str], pipe: bool):
    if pipe:
        yield asyncio.subprocess.PIPE
    elif path is None:
        yield subprocess.DEVNULL
    else:
        with open(path, "rb") as fin:
            yield fin


def _merge_env(env: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    if not env:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


def _spawn_kwargs() -> dict:
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}
