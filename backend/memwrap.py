"""
Measuring wrapper used by the "wrapper" execution mode.

    python memwrap.py REPORT_PATH -- program [args...]

Runs the program with inherited stdio, then writes a JSON report with wall
time, peak resident memory of the child and how it exited. The wrapper exits
with the program's exit code (128 + signal number when it was killed).
POSIX only: peak memory comes from getrusage(RUSAGE_CHILDREN).
"""

import json
import signal
import subprocess
import sys
import time


def _peak_memory_mb():
    if sys.platform == "win32":
        return None
    import resource
    peak = resource.getrusage(resource.RUSAGE_CHILDREN).ru_maxrss
    # kilobytes on Linux, bytes on macOS
    if sys.platform == "darwin":
        return round(peak / (1024 * 1024), 2)
    return round(peak / 1024, 2)


def main(argv=None):
    argv = list(sys.argv[1:] if argv is None else argv)
    if len(argv) < 3 or argv[1] != "--":
        sys.stderr.write("usage: memwrap.py REPORT_PATH -- program [args...]\n")
        return 2
    report_path, cmd = argv[0], argv[2:]

    start_time = time.perf_counter()
    try:
        process = subprocess.Popen(cmd)
    except OSError as e:
        with open(report_path, "w") as f:
            json.dump({"error": f"{type(e).__name__}: {e}"}, f)
        return 127
    returncode = process.wait()
    elapsed_ms = (time.perf_counter() - start_time) * 1000

    report = {
        "time_ms": round(elapsed_ms, 2),
        "memory_mb": _peak_memory_mb(),
        "exit_code": returncode if returncode >= 0 else None,
        "signal": signal.Signals(-returncode).name if returncode < 0 else None,
    }
    with open(report_path, "w") as f:
        json.dump(report, f)
    return returncode if returncode >= 0 else 128 - returncode


if __name__ == "__main__":
    sys.exit(main())
