"""Docker-based sandbox executor for duel and practice submissions.

Provides secure, isolated code execution with strict resource limits.
Each invocation gets its own working directory and freshly named
containers with no network access. One wall-clock deadline covers the
compile and run phases together.
"""

import asyncio
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from codeduel.config import settings
from codeduel.core.exceptions import SandboxError, UnsupportedLanguageError
from codeduel.core.metrics import record_cleanup_failure, record_sandbox_execution
from codeduel.game_engine.duel.languages import LanguageConfig, get_language_config

logger = logging.getLogger(__name__)

# docker run exits with 125 when the daemon could not create the container
DOCKER_RUN_FAILURE = 125
IMAGE_PULL_TIMEOUT = 300.0
CONTAINER_REMOVE_TIMEOUT = 10.0


class ExecutionStatus(str, Enum):
    """Outcome of a single sandbox invocation."""
    ACCEPTED = "Accepted"
    COMPILATION_ERROR = "Compilation Error"
    RUNTIME_ERROR = "Runtime Error"
    TIME_LIMIT_EXCEEDED = "Time Limit Exceeded"
    INTERNAL_ERROR = "Internal Error"


@dataclass(frozen=True)
class SandboxLimits:
    """Resource limits applied to every container."""
    timeout: float = 10.0  # seconds, compile + run
    compile_timeout: float = 10.0
    memory: str = "128m"
    cpus: str = "0.5"
    pids_limit: int = 64
    network: str = "none"
    stdout_limit: int = 10000
    stderr_limit: int = 2000

    @classmethod
    def from_settings(cls) -> "SandboxLimits":
        return cls(
            timeout=settings.sandbox_timeout,
            compile_timeout=settings.sandbox_compile_timeout,
            memory=settings.sandbox_memory,
            cpus=settings.sandbox_cpus,
            pids_limit=settings.sandbox_pids_limit,
            network=settings.sandbox_docker_network,
            stdout_limit=settings.sandbox_stdout_limit,
            stderr_limit=settings.sandbox_stderr_limit,
        )


@dataclass(frozen=True)
class ExecutionRequest:
    """A single execution; owned by exactly one invocation."""
    code: str
    language: str
    stdin: str = ""


@dataclass(frozen=True)
class ExecutionResult:
    """Result of code execution."""
    status: ExecutionStatus
    stdout: str
    stderr: str
    error: Optional[str]
    time_ms: Optional[int]
    memory_kb: Optional[int] = None  # Best effort; docker run does not report it
    exit_code: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.ACCEPTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "output": self.stdout,
            "stderr": self.stderr,
            "error": self.error,
            "time": self.time_ms,
            "memory": self.memory_kb,
            "exitCode": self.exit_code,
        }


@dataclass
class ProcessOutcome:
    """What a finished (or killed) sandbox process left behind."""
    returncode: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool
    elapsed: float


def _result(
    status: ExecutionStatus,
    error: Optional[str],
    stdout: str = "",
    stderr: str = "",
    time_ms: Optional[int] = None,
    exit_code: Optional[int] = None,
) -> ExecutionResult:
    return ExecutionResult(
        status=status,
        stdout=stdout,
        stderr=stderr,
        error=error,
        time_ms=time_ms,
        exit_code=exit_code,
    )


class SandboxExecutor:
    """Executes code in isolated Docker containers.

    Security features:
    - No network access
    - Read-only filesystem and code mount during the run phase
    - Memory limit with swap pinned to the same value
    - CPU share and process count limits
    - Wall-clock deadline enforced by removing the container
    - Fresh working directory and container names per execution
    """

    def __init__(
        self,
        limits: Optional[SandboxLimits] = None,
        work_root: Optional[str] = None,
        docker_binary: Optional[str] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.limits = limits or SandboxLimits.from_settings()
        self.work_root = work_root if work_root is not None else settings.sandbox_work_dir
        self.docker_binary = docker_binary or settings.sandbox_docker_binary
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.sandbox_max_concurrency)
        self._docker_available = False
        self._ready_images: set[str] = set()
        self._image_lock = asyncio.Lock()

    async def _check_docker(self) -> bool:
        """Check if Docker is available. Only a successful check is cached."""
        if self._docker_available:
            return True

        try:
            proc = await asyncio.create_subprocess_exec(
                self.docker_binary, "version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await proc.wait()
            available = proc.returncode == 0
        except OSError:
            available = False

        if available:
            self._docker_available = True
        else:
            logger.error("Docker is not available; sandbox executions will fail")
        return available

    async def _ensure_image(self, image: str) -> None:
        """Pull the image once; later calls are no-ops."""
        if image in self._ready_images:
            return

        async with self._image_lock:
            if image in self._ready_images:
                return

            inspect = await self._run_process(
                [self.docker_binary, "image", "inspect", image],
                stdin_data=None,
                timeout=CONTAINER_REMOVE_TIMEOUT,
            )
            if inspect.returncode != 0:
                logger.info(f"Pulling sandbox image {image}")
                pull = await self._run_process(
                    [self.docker_binary, "pull", image],
                    stdin_data=None,
                    timeout=IMAGE_PULL_TIMEOUT,
                )
                if pull.timed_out or pull.returncode != 0:
                    raise SandboxError(f"Failed to pull image {image}: {pull.stderr.strip()}")

            self._ready_images.add(image)

    def build_command(
        self,
        container_name: str,
        work_dir: Path,
        config: LanguageConfig,
        compile_phase: bool = False,
        attach_stdin: bool = False,
    ) -> list[str]:
        """Build the docker run invocation for one phase."""
        mount = f"{work_dir}:/code" if compile_phase else f"{work_dir}:/code:ro"
        cmd = [
            self.docker_binary, "run",
            "--rm",
            "--name", container_name,
            "--network", self.limits.network,
            "--memory", self.limits.memory,
            "--memory-swap", self.limits.memory,  # No swap beyond the memory limit
            "--cpus", self.limits.cpus,
            "--pids-limit", str(self.limits.pids_limit),
            "--security-opt", "no-new-privileges",
            "-v", mount,
            "-w", "/code",
        ]
        if hasattr(os, "getuid"):
            # Build artifacts stay owned by us so the working directory can be removed
            cmd.extend(["--user", f"{os.getuid()}:{os.getgid()}"])
        if not compile_phase:
            cmd.extend(["--read-only", "--tmpfs", "/tmp:size=10M"])
        if attach_stdin:
            cmd.append("-i")
        cmd.append(config.image)
        cmd.extend(config.compile_command if compile_phase else config.run_command)
        return cmd

    async def execute(
        self,
        code: str,
        language: str,
        stdin: str = "",
    ) -> ExecutionResult:
        """Execute code in a sandboxed container.

        Args:
            code: Source code to execute
            language: Language name from the runtime registry
            stdin: Input to provide to the program

        Returns:
            ExecutionResult; infrastructure problems are reported as
            Internal Error results rather than raised.
        """
        if not code or not code.strip():
            return _result(ExecutionStatus.COMPILATION_ERROR, "No code submitted")

        if len(code) > settings.max_code_length:
            return _result(
                ExecutionStatus.COMPILATION_ERROR,
                f"Code exceeds maximum length of {settings.max_code_length} characters",
            )

        try:
            config = get_language_config(language)
        except UnsupportedLanguageError as e:
            return _result(ExecutionStatus.INTERNAL_ERROR, e.message)

        if not await self._check_docker():
            return _result(ExecutionStatus.INTERNAL_ERROR, "Docker is not available")

        request = ExecutionRequest(code=code, language=language.lower(), stdin=stdin or "")

        async with self._semaphore:
            start = time.perf_counter()
            result = await self._execute_in_sandbox(request, config)

        record_sandbox_execution(request.language, result.status.value, time.perf_counter() - start)
        return result

    async def _execute_in_sandbox(
        self,
        request: ExecutionRequest,
        config: LanguageConfig,
    ) -> ExecutionResult:
        work_dir: Optional[Path] = None
        live_containers: list[str] = []
        try:
            work_dir = Path(tempfile.mkdtemp(prefix="codeduel-", dir=self.work_root))
            return await self._compile_and_run(request, config, work_dir, live_containers)
        except SandboxError as e:
            logger.error(f"Sandbox failure ({request.language}): {e.message}")
            return _result(ExecutionStatus.INTERNAL_ERROR, e.message)
        except Exception as e:
            logger.exception(f"Unexpected sandbox error ({request.language}): {e}")
            return _result(ExecutionStatus.INTERNAL_ERROR, str(e) or type(e).__name__)
        finally:
            await self._cleanup(work_dir, live_containers)

    async def _compile_and_run(
        self,
        request: ExecutionRequest,
        config: LanguageConfig,
        work_dir: Path,
        live_containers: list[str],
    ) -> ExecutionResult:
        await self._ensure_image(config.image)

        source = work_dir / config.file_name
        source.write_text(request.code.replace("\r\n", "\n"), encoding="utf-8")
        (work_dir / "input.txt").write_text(request.stdin, encoding="utf-8")

        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + self.limits.timeout

        def elapsed_ms() -> int:
            return int((loop.time() - started) * 1000)

        if config.is_compiled:
            name = self._container_name()
            live_containers.append(name)
            budget = min(self.limits.compile_timeout, deadline - loop.time())
            outcome = await self._run_process(
                self.build_command(name, work_dir, config, compile_phase=True),
                stdin_data=None,
                timeout=budget,
                container_name=name,
            )
            live_containers.remove(name)

            if outcome.timed_out:
                return _result(
                    ExecutionStatus.TIME_LIMIT_EXCEEDED,
                    "Compilation timed out",
                    stderr=outcome.stderr,
                    time_ms=elapsed_ms(),
                )
            if outcome.returncode == DOCKER_RUN_FAILURE:
                raise SandboxError(f"Container failed to start: {outcome.stderr.strip()}")
            if outcome.returncode != 0 or outcome.stderr.strip():
                return _result(
                    ExecutionStatus.COMPILATION_ERROR,
                    outcome.stderr or "Compilation failed",
                    stdout=outcome.stdout,
                    stderr=outcome.stderr,
                    time_ms=elapsed_ms(),
                    exit_code=outcome.returncode,
                )

        attach_stdin = bool(request.stdin) or config.interactive_stdin
        name = self._container_name()
        live_containers.append(name)
        outcome = await self._run_process(
            self.build_command(name, work_dir, config, attach_stdin=attach_stdin),
            stdin_data=request.stdin.encode("utf-8") if attach_stdin else None,
            timeout=deadline - loop.time(),
            container_name=name,
        )
        live_containers.remove(name)

        if outcome.timed_out:
            return _result(
                ExecutionStatus.TIME_LIMIT_EXCEEDED,
                "Execution timed out",
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                time_ms=int(self.limits.timeout * 1000),
            )
        if outcome.returncode == DOCKER_RUN_FAILURE:
            raise SandboxError(f"Container failed to start: {outcome.stderr.strip()}")
        if outcome.returncode != 0:
            return _result(
                ExecutionStatus.RUNTIME_ERROR,
                outcome.stderr or "Execution failed",
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                time_ms=elapsed_ms(),
                exit_code=outcome.returncode,
            )
        return _result(
            ExecutionStatus.ACCEPTED,
            outcome.stderr or None,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            time_ms=elapsed_ms(),
            exit_code=0,
        )

    async def _run_process(
        self,
        argv: list[str],
        stdin_data: Optional[bytes],
        timeout: float,
        container_name: Optional[str] = None,
    ) -> ProcessOutcome:
        """Run one process, killing it (and its container) at the deadline.

        Output read before the kill is kept so a timed-out run can still
        report partial stdout.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SandboxError(f"Failed to start {argv[0]}: {e}") from e

        stdout_buf = bytearray()
        stderr_buf = bytearray()
        pumps = [
            asyncio.create_task(self._drain(proc.stdout, stdout_buf, self.limits.stdout_limit * 4)),
            asyncio.create_task(self._drain(proc.stderr, stderr_buf, self.limits.stderr_limit * 4)),
        ]
        if stdin_data is not None:
            pumps.append(asyncio.create_task(self._feed(proc, stdin_data)))

        start = time.perf_counter()
        timed_out = False
        try:
            await asyncio.wait_for(proc.wait(), timeout=max(timeout, 0))
        except asyncio.TimeoutError:
            timed_out = True
            await self._kill(proc, container_name)
        except asyncio.CancelledError:
            await self._kill(proc, container_name)
            for pump in pumps:
                pump.cancel()
            raise
        elapsed = time.perf_counter() - start

        await asyncio.gather(*pumps, return_exceptions=True)

        return ProcessOutcome(
            returncode=None if timed_out else proc.returncode,
            stdout=stdout_buf.decode("utf-8", errors="replace")[: self.limits.stdout_limit],
            stderr=stderr_buf.decode("utf-8", errors="replace")[: self.limits.stderr_limit],
            timed_out=timed_out,
            elapsed=elapsed,
        )

    @staticmethod
    async def _drain(stream: Optional[asyncio.StreamReader], buf: bytearray, limit: int) -> None:
        """Read a pipe to EOF, keeping at most `limit` bytes."""
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            if len(buf) < limit:
                buf.extend(chunk[: limit - len(buf)])

    @staticmethod
    async def _feed(proc: asyncio.subprocess.Process, data: bytes) -> None:
        if proc.stdin is None:
            return
        try:
            if data:
                proc.stdin.write(data)
                await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Program exited without reading all of its input
            pass
        finally:
            proc.stdin.close()

    async def _kill(self, proc: asyncio.subprocess.Process, container_name: Optional[str]) -> None:
        """Terminate the container first; killing the docker client alone leaves it running."""
        if container_name:
            await self._remove_container(container_name)
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

    async def _remove_container(self, name: str) -> None:
        """Force-remove a container. Never raises."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.docker_binary, "rm", "-f", name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(proc.wait(), timeout=CONTAINER_REMOVE_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to remove container {name}: {e!r}")
            record_cleanup_failure("container")

    async def _cleanup(self, work_dir: Optional[Path], live_containers: list[str]) -> None:
        """Remove everything the invocation created. Never raises."""
        for name in live_containers:
            await self._remove_container(name)

        if work_dir is None:
            return
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove sandbox directory {work_dir}: {e}")
            record_cleanup_failure("workdir")

    @staticmethod
    def _container_name() -> str:
        return f"codeduel-{uuid4().hex}"


# Global sandbox executor instance
sandbox = SandboxExecutor()


async def execute_code(code: str, language: str, stdin: str = "") -> ExecutionResult:
    """Execute code using the global sandbox."""
    return await sandbox.execute(code, language, stdin)
