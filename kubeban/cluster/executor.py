"""Parallel remote command execution across cache containers.

ExecSession       -- one remote exec into one container, raising
                     ExecutionFailedError on any failure.
PodExecSession    -- ExecSession over the Kubernetes pod ``exec``
                     subresource (websocket, v4.channel.k8s.io framing).
ParallelExecutor  -- runs one session per target concurrently and joins them;
                     every target yields exactly one ExecutionResult.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Protocol

import aiohttp
import structlog
from kubernetes_asyncio.stream.ws_client import (  # type: ignore[import-untyped]
    ERROR_CHANNEL,
    STDERR_CHANNEL,
    STDOUT_CHANNEL,
)

from kubeban.errors import ExecutionFailedError
from kubeban.models.invalidation import ExecOutput, ExecutionResult, ExecutionTarget
from kubeban.observability.metrics import executions_total

_log = structlog.get_logger(component="cluster.executor")

_SHELL = ("/bin/sh", "-c")



class ExecSession(Protocol):
    """Runs one command inside one container."""

    async def run(self, target: ExecutionTarget) -> ExecOutput: ...


def shell_command(command: str) -> list[str]:
    return [*_SHELL, command]


class PodExecSession:
    """ExecSession using ``connect_get_namespaced_pod_exec`` over a websocket.

    Args:
        ws_core_v1: ``CoreV1Api`` bound to a ``kubernetes_asyncio.stream.WsApiClient``.
            Shared by all concurrent sessions; each call opens its own socket.
    """

    def __init__(self, ws_core_v1: Any) -> None:
        self._v1 = ws_core_v1

    async def run(self, target: ExecutionTarget) -> ExecOutput:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        try:
            ws_ctx = await self._v1.connect_get_namespaced_pod_exec(
                target.instance.name,
                target.instance.namespace,
                container=target.role,
                command=shell_command(target.command),
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
            async with ws_ctx as ws:
                stdout, stderr, status = await _read_frames(ws)
        except ApiException as exc:
            raise ExecutionFailedError(f"exec rejected: {exc.status} {exc.reason}") from exc
        except aiohttp.ClientError as exc:
            raise ExecutionFailedError(f"exec session failed: {exc}") from exc

        exit_code, message = parse_exec_status(status)
        if exit_code != 0:
            raise ExecutionFailedError(message, exit_code=exit_code, stdout=stdout, stderr=stderr)
        return ExecOutput(stdout=stdout, stderr=stderr, exit_code=0)


async def _read_frames(ws: Any) -> tuple[str, str, str]:
    """Demultiplex channel-prefixed frames into stdout, stderr and status."""
    stdout = bytearray()
    stderr = bytearray()
    status = bytearray()
    async for msg in ws:
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise ExecutionFailedError(f"exec stream error: {ws.exception()}")
        data = msg.data.encode("utf-8") if isinstance(msg.data, str) else msg.data
        if not data:
            continue
        channel, chunk = data[0], data[1:]
        if channel == STDOUT_CHANNEL:
            stdout.extend(chunk)
        elif channel == STDERR_CHANNEL:
            stderr.extend(chunk)
        elif channel == ERROR_CHANNEL:
            status.extend(chunk)
    return (
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
        status.decode("utf-8", errors="replace"),
    )


def parse_exec_status(raw: str) -> tuple[int | None, str]:
    """Map the exec status channel payload to ``(exit_code, message)``.

    Under v4.channel.k8s.io the API server always ends a session with a
    Status frame, so an empty payload means the socket was cut off and the
    command's outcome is unknown: ``(None, ...)``.
    A failure that carries no exit code maps to ``-1``.
    """
    if not raw.strip():
        return None, "exec stream closed without status"
    try:
        status = json.loads(raw)
    except json.JSONDecodeError:
        return -1, f"unparseable exec status: {raw[:200]}"

    if status.get("status") == "Success":
        return 0, ""

    message = str(status.get("message", "")) or str(status.get("reason", "exec failed"))
    if status.get("reason") == "NonZeroExitCode":
        for cause in (status.get("details") or {}).get("causes") or []:
            if cause.get("reason") == "ExitCode":
                try:
                    return int(cause.get("message", "")), message
                except ValueError:
                    break
    return -1, message


class ParallelExecutor:
    """Fans a command out to every target and waits for all of them.

    * One asyncio task per target, joined with ``asyncio.gather``.
    * Never raises for a target failure: errors and timeouts become failed
      ExecutionResults and siblings keep running.
    * ``max_concurrency`` of 0 runs every session at once.
    """

    def __init__(
        self,
        session: ExecSession,
        timeout_seconds: float = 20.0,
        max_concurrency: int = 0,
    ) -> None:
        self._session = session
        self._timeout = timeout_seconds
        self._max_concurrency = max_concurrency

    async def execute(self, targets: list[ExecutionTarget]) -> list[ExecutionResult]:
        """Run every target's command; results are returned in target order."""
        if not targets:
            return []
        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency > 0 else None
        tasks = [
            asyncio.create_task(self._run_one(target, semaphore), name=f"exec:{target.identity}")
            for target in targets
        ]
        return list(await asyncio.gather(*tasks))

    async def _run_one(
        self,
        target: ExecutionTarget,
        semaphore: asyncio.Semaphore | None,
    ) -> ExecutionResult:
        if semaphore is None:
            result = await self._exec(target)
        else:
            async with semaphore:
                result = await self._exec(target)

        executions_total.labels(success="true" if result.success else "false").inc()
        if result.success:
            _log.info(
                "exec_session_succeeded",
                target=target.identity,
                stdout=result.stdout.strip()[:500],
                stderr=result.stderr.strip()[:500],
                duration_ms=round(result.duration_ms, 1),
            )
        else:
            _log.warning(
                "exec_session_failed",
                target=target.identity,
                error=result.error,
                exit_code=result.exit_code,
                stderr=result.stderr.strip()[:500],
            )
        return result

    async def _exec(self, target: ExecutionTarget) -> ExecutionResult:
        t_start = time.monotonic()
        try:
            output = await asyncio.wait_for(self._session.run(target), timeout=self._timeout)
        except TimeoutError:
            return _failed(target, f"timed out after {self._timeout:g}s", t_start)
        except ExecutionFailedError as exc:
            return _failed(target, str(exc), t_start, exit_code=exc.exit_code, stdout=exc.stdout, stderr=exc.stderr)
        except Exception as exc:  # noqa: BLE001
            return _failed(target, f"{type(exc).__name__}: {exc}", t_start)

        return ExecutionResult(
            target=target,
            success=True,
            stdout=output.stdout,
            stderr=output.stderr,
            exit_code=output.exit_code,
            duration_ms=(time.monotonic() - t_start) * 1000.0,
        )


def _failed(
    target: ExecutionTarget,
    error: str,
    t_start: float,
    exit_code: int | None = None,
    stdout: str = "",
    stderr: str = "",
) -> ExecutionResult:
    return ExecutionResult(
        target=target,
        success=False,
        stdout=stdout,
        stderr=stderr,
        error=error,
        exit_code=exit_code,
        duration_ms=(time.monotonic() - t_start) * 1000.0,
    )
