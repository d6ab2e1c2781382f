"""Inference backends: llama.cpp command line and a local Ollama server."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
import logging
from typing import Any, Protocol

import httpx
from ollama import AsyncClient

from .exceptions import BackendFailure, BackendUnavailableError, ConfigValidationError
from .models import ModelRegistry

LOGGER = logging.getLogger(__name__)

# Keep only the tail of stderr in error messages; llama.cpp logs verbosely.
_STDERR_TAIL_CHARS = 500


class InferenceBackend(Protocol):
    """Atomic request/response generation contract."""

    async def generate(self, prompt: str, model_id: str) -> str: ...


class LlamaCppBackend:
    """Run ``llama-cli`` once per prompt and return its standard output."""

    def __init__(
        self,
        llama_cli_path: str,
        resolve_model_path: Callable[[str], str],
        extra_args: Sequence[str] = (),
        timeout: float = 600.0,
    ) -> None:
        self.llama_cli_path = llama_cli_path
        self.resolve_model_path = resolve_model_path
        self.extra_args = list(extra_args)
        self.timeout = timeout

    def build_command(self, prompt: str, model_id: str) -> list[str]:
        model_path = self.resolve_model_path(model_id)
        return [
            self.llama_cli_path,
            "-m",
            model_path,
            "-p",
            prompt,
            *self.extra_args,
        ]

    async def generate(self, prompt: str, model_id: str) -> str:
        command = self.build_command(prompt, model_id)
        LOGGER.info(
            "backend.llama_cpp.spawn",
            extra={
                "event": "backend.llama_cpp.spawn",
                "model_id": model_id,
                "binary": self.llama_cli_path,
            },
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise BackendUnavailableError(
                f"Failed to spawn process {self.llama_cli_path!r}: {exc}"
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            await self._kill(process)
            raise BackendFailure(
                f"llama-cli did not finish within {self.timeout:g}s."
            ) from exc
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        if process.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL_CHARS:]
            raise BackendFailure(
                f"llama-cli exited with status {process.returncode}: {tail.strip()}"
            )
        return stdout.decode("utf-8", errors="replace").strip()

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            process.kill()
            await process.wait()


class OllamaBackend:
    """Generate through a local Ollama server; the model id is the Ollama tag."""

    def __init__(
        self,
        host: str,
        timeout: float = 120.0,
        retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        client: Any | None = None,
    ) -> None:
        self.host = host
        self.timeout = timeout
        self.retries = max(0, retries)
        self.retry_backoff_seconds = retry_backoff_seconds
        self._client = client if client is not None else AsyncClient(
            host=host, timeout=timeout
        )

    @staticmethod
    def _extract_text(response: Any) -> str:
        if isinstance(response, dict):
            value = response.get("response", "")
        else:
            value = getattr(response, "response", "")
        return value if isinstance(value, str) else ""

    def _map_exception(self, exc: Exception, model_id: str) -> BackendFailure:
        if isinstance(exc, BackendFailure):
            return exc
        if isinstance(
            exc,
            (
                httpx.ConnectError,
                httpx.ConnectTimeout,
                httpx.ReadTimeout,
                httpx.NetworkError,
            ),
        ):
            return BackendUnavailableError(
                f"Unable to connect to Ollama host {self.host}."
            )
        lower_message = str(exc).lower()
        if "model" in lower_message and "not found" in lower_message:
            return BackendFailure(f"Model {model_id!r} was not found on {self.host}.")
        return BackendFailure(f"Ollama request to {self.host} failed: {exc}")

    async def generate(self, prompt: str, model_id: str) -> str:
        for attempt in range(self.retries + 1):
            try:
                response = await self._client.generate(
                    model=model_id, prompt=prompt, stream=False
                )
                return self._extract_text(response).strip()
            except asyncio.CancelledError:
                LOGGER.info(
                    "backend.request.cancelled",
                    extra={"event": "backend.request.cancelled", "model_id": model_id},
                )
                raise
            except Exception as exc:  # noqa: BLE001 - external API can fail in many ways.
                mapped_exc = self._map_exception(exc, model_id)
                LOGGER.warning(
                    "backend.request.retry",
                    extra={
                        "event": "backend.request.retry",
                        "attempt": attempt + 1,
                        "error_type": mapped_exc.__class__.__name__,
                    },
                )
                if attempt >= self.retries:
                    raise mapped_exc from exc
                await asyncio.sleep(self.retry_backoff_seconds * (attempt + 1))
        raise BackendFailure("No generation attempt was made.")


def build_backend(
    backend_config: dict[str, Any], registry: ModelRegistry
) -> InferenceBackend:
    """Create the backend selected by the ``[backend]`` config section."""
    kind = str(backend_config.get("kind", "llama_cpp"))
    if kind == "llama_cpp":
        llama_cpp = backend_config.get("llama_cpp", {})
        return LlamaCppBackend(
            llama_cli_path=str(llama_cpp["llama_cli_path"]),
            resolve_model_path=lambda model_id: registry.get(model_id).path,
            extra_args=list(llama_cpp.get("extra_args", [])),
            timeout=float(llama_cpp.get("timeout", 600)),
        )
    if kind == "ollama":
        ollama = backend_config.get("ollama", {})
        return OllamaBackend(
            host=str(ollama["host"]),
            timeout=float(ollama.get("timeout", 120)),
            retries=int(ollama.get("retries", 2)),
            retry_backoff_seconds=float(ollama.get("retry_backoff_seconds", 0.5)),
        )
    raise ConfigValidationError(f"Unsupported backend kind {kind!r}.")
