"""Run the configured linters and report their findings."""

from __future__ import annotations

import codecs
import io
import logging
import os
import subprocess
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import IO, Any, Callable, Iterable, Mapping, Protocol

from reviewhound.config import Config, Runner
from reviewhound.core import Diagnostic, Result, ResultMap, run_from_result

logger = logging.getLogger(__name__)

SECRET_ENVS = (
    "REVIEWDOG_GITHUB_API_TOKEN",
    "REVIEWDOG_GITLAB_API_TOKEN",
    "REVIEWDOG_TOKEN",
)

_CHUNK = 65536


class _Parser(Protocol):
    def parse(self, stream: IO[Any]) -> list[Diagnostic]: ...


ParserFactory = Callable[[str, list[str]], _Parser]


def filtered_environ() -> dict[str, str]:
    """Return the environment for runner commands, without secret tokens."""
    return {k: v for k, v in os.environ.items() if k not in SECRET_ENVS}


def _shell_command(command: str) -> list[str]:
    if os.name == "nt":
        # sh is not always available on Windows; MinGW sets SHELL, otherwise
        # fall back to cmd.exe, which takes "/c" instead of "-c".
        shell = os.environ.get("SHELL", "")
        comspec = os.environ.get("COMSPEC", "")
        if shell:
            return [shell, "-c", command]
        if comspec:
            return [comspec, "/c", command]
    return ["sh", "-c", command]


class _CmdBuilder:
    """Starts shell commands with a fixed environment, optionally teeing output."""

    def __init__(self, envs: dict[str, str], enable_tee: bool) -> None:
        self.envs = envs
        self.tee_stdout: IO[str] | None = sys.stdout if enable_tee else None
        self.tee_stderr: IO[str] | None = sys.stderr if enable_tee else None

    def start(self, command: str) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                _shell_command(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.envs,
            )
        except OSError as err:
            raise RuntimeError(f"fail to start command: {err}") from err


def _drain(pipe: IO[bytes], tee: IO[str] | None, sink: list[bytes]) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    for chunk in iter(partial(pipe.read1, _CHUNK), b""):  # type: ignore[attr-defined]
        sink.append(chunk)
        if tee is not None:
            tee.write(decoder.decode(chunk))
            tee.flush()
    if tee is not None:
        rest = decoder.decode(b"", final=True)
        if rest:
            tee.write(rest)
            tee.flush()
    pipe.close()


def _collect_output(proc: subprocess.Popen, builder: _CmdBuilder) -> str:
    """Read stdout and stderr concurrently; return stdout followed by stderr."""
    out: list[bytes] = []
    err: list[bytes] = []
    err_thread = threading.Thread(
        target=_drain, args=(proc.stderr, builder.tee_stderr, err), daemon=True
    )
    err_thread.start()
    _drain(proc.stdout, builder.tee_stdout, out)
    err_thread.join()
    return (b"".join(out) + b"".join(err)).decode("utf-8", errors="replace")


def _runner_name(key: str, runner: Runner) -> str:
    return runner.name or key


def run_and_parse(
    conf: Config,
    runners: Iterable[str] | None,
    default_level: str,
    tee_mode: bool,
    parser_factory: ParserFactory,
) -> ResultMap:
    """Run the configured commands and parse their output, keyed by runner name.

    ``parser_factory(format_name, errorformat)`` builds the parser for a runner.
    """
    selected = set(runners or ())
    results = ResultMap()
    builder = _CmdBuilder(filtered_environ(), tee_mode)
    used: list[str] = []
    limit = 1 if tee_mode else (os.cpu_count() or 1)
    semaphore = threading.Semaphore(limit)
    threads: list[threading.Thread] = []
    errors: list[BaseException] = []

    def work(name: str, runner: Runner, parser: _Parser, proc: subprocess.Popen) -> None:
        try:
            output = _collect_output(proc, builder)
            try:
                diagnostics = parser.parse(io.StringIO(output))
            finally:
                returncode = proc.wait()
            cmd_err = (
                subprocess.CalledProcessError(returncode, runner.cmd) if returncode else None
            )
            results.store(
                name,
                Result(
                    name=name,
                    level=runner.level or default_level,
                    diagnostics=list(diagnostics),
                    cmd_err=cmd_err,
                ),
            )
            msg = f"reviewhound: [finish]\trunner={name}"
            if cmd_err is not None:
                msg += f"\terror={cmd_err}"
            logger.info(msg)
        except BaseException as err:  # reported after all runners finish
            errors.append(err)
        finally:
            semaphore.release()

    try:
        for key, runner in conf.runner.items():
            name = _runner_name(key, runner)
            if selected and name not in selected:
                continue
            used.append(name)
            semaphore.acquire()
            try:
                logger.info("reviewhound: [start]\trunner=%s", name)
                fname = runner.format
                if not fname and not runner.errorformat:
                    fname = name
                parser = parser_factory(fname, list(runner.errorformat))
                proc = builder.start(runner.cmd)
            except BaseException:
                semaphore.release()
                raise
            thread = threading.Thread(target=work, args=(name, runner, parser, proc), daemon=True)
            thread.start()
            threads.append(thread)
    finally:
        for thread in threads:
            thread.join()

    if errors:
        raise RuntimeError(f"fail to run reviewhound: {errors[0]}") from errors[0]
    _check_unknown_runners(selected, used)
    return results


def _check_unknown_runners(selected: set[str], used: list[str]) -> None:
    unknown = sorted(selected.difference(used))
    if unknown:
        raise RuntimeError(f"runner not found: [{','.join(unknown)}]")


def run(
    conf: Config,
    runners: Iterable[str] | None,
    comment_service: Any,
    diff_service: Any,
    tee_mode: bool,
    filter_mode: Any,
    fail_on_error: bool,
    parser_factory: ParserFactory,
    checker: Callable[..., Iterable[Any]],
) -> None:
    """Run the configured runners and report their findings against the diff."""
    results = run_and_parse(conf, runners, "", tee_mode, parser_factory)
    if len(results) == 0:
        return
    diff_text = diff_service.diff()

    def report(toolname: str, result: Result) -> None:
        result.check_unexpected_failure()
        run_from_result(
            comment_service,
            result.diagnostics,
            diff_text,
            diff_service.strip(),
            toolname,
            filter_mode,
            fail_on_error,
            checker,
        )

    items: list[tuple[str, Result]] = results.items()
    with ThreadPoolExecutor(max_workers=len(items)) as pool:
        futures = [pool.submit(report, name, result) for name, result in items]
    for future in futures:
        err = future.exception()
        if err is not None:
            raise err


def _mapping_names(mapping: Mapping[str, Any]) -> list[str]:
    return list(mapping)