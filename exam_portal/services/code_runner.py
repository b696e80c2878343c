"""Client for the external sandboxed code-execution service.

Code is never run locally. Each call submits one program and one stdin
payload and returns whatever the sandbox captured.
"""

import logging
from functools import lru_cache
from typing import Optional

import httpx
from pydantic import BaseModel
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from exam_portal.config import settings
from exam_portal.errors import CodeExecutionError

logger = logging.getLogger(__name__)


class ExecutionResult(BaseModel):
    stdout: str = ""
    stderr: str = ""
    # Compile/runtime failure reported by the sandbox
    execution_error: Optional[str] = None


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class CodeRunnerClient:
    """Thin wrapper around ``POST {base_url}/execute``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_attempts: int = 2,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        backoff_multiplier: float = 0.5,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.Client(
            base_url=base_url, timeout=timeout, headers=headers
        )
        self.max_attempts = max(1, max_attempts)
        self.backoff_multiplier = backoff_multiplier

    def _post(self, payload: dict) -> httpx.Response:
        response = self._client.post("/execute", json=payload)
        response.raise_for_status()
        return response

    def execute(self, source_code: str, language: str, stdin: str = "") -> ExecutionResult:
        """Run ``source_code`` remotely with ``stdin``.

        Transport errors and 5xx responses are retried with exponential
        backoff up to ``max_attempts`` calls in total.

        Raises:
            CodeExecutionError: If the service is unreachable, keeps failing,
                rejects the request, or returns an unreadable body
        """
        payload = {"language": language, "source_code": source_code, "stdin": stdin}
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=4),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            response = retrying(self._post, payload)
            data = response.json()
        except httpx.HTTPError as exc:
            logger.error("Code runner request failed: %s", exc)
            raise CodeExecutionError(str(exc)) from exc
        except ValueError as exc:
            logger.error("Code runner returned an unreadable body: %s", exc)
            raise CodeExecutionError("Unreadable response from code runner") from exc

        if not isinstance(data, dict):
            raise CodeExecutionError("Unexpected response shape from code runner")
        error = data.get("error")
        return ExecutionResult(
            stdout=str(data.get("stdout") or ""),
            stderr=str(data.get("stderr") or ""),
            execution_error=str(error) if error else None,
        )

    def close(self) -> None:
        self._client.close()


@lru_cache
def get_code_runner() -> CodeRunnerClient:
    """Process-wide client configured from settings (FastAPI dependency)."""
    return CodeRunnerClient(
        base_url=settings.CODE_RUNNER_URL,
        timeout=settings.CODE_RUNNER_TIMEOUT,
        max_attempts=settings.CODE_RUNNER_MAX_ATTEMPTS,
        api_key=settings.CODE_RUNNER_API_KEY,
    )
