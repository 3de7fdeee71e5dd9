"""
Video provider client.

Single interface over the Kie and Poyo Sora APIs:
- create_task: submit a prompt, falling back through models on failure
- get_task_details: resolve task status across candidate endpoints
- poll_task_until_complete: wait for a terminal state within a poll budget
- generate_video: create + poll in one call

Transient failures (429/5xx) are retried with backoff, each provider sits
behind its own circuit breaker, and every failure surfaces as a typed
VideoGenerationError.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from langfuse import observe

from core.circuit_breaker import CircuitBreaker, get_provider_breaker
from core.config import ProviderConfig

from .errors import (
    AuthenticationError,
    GenerationFailedError,
    PollTimeoutError,
    TaskNotFoundError,
    ValidationError,
    VideoGenerationError,
    map_provider_error,
)
from .models import (
    CreateTaskOptions,
    CreateTaskResult,
    TaskDetail,
    TaskState,
    fallback_sequence,
)
from .providers import ADAPTERS, Endpoint, ProviderAdapter, get_adapter
from .retry import is_transient_status, retry_with_backoff

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


def _is_retryable_lookup(status: int) -> bool:
    # A new task can 404 until the provider indexes it
    return status == 404 or is_transient_status(status)


class ProviderClient:
    """
    Client for the asynchronous video providers.

    Usage:
        client = ProviderClient(config.providers)
        detail = await client.generate_video(
            prompt="A chef plating pasta in slow motion",
            aspect_ratio="9:16",
        )
        print(detail.video_url)
        await client.close()
    """

    def __init__(
        self,
        config: ProviderConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            config: Provider keys, endpoints, timeouts and poll budget
            http_client: Shared client; one is created lazily when omitted
            sleep: Awaitable sleep used for backoff and polling
        """
        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

        # Bad requests and unindexed tasks are answered by a healthy provider
        excluded = (ValidationError, TaskNotFoundError)
        self._breakers: Dict[str, CircuitBreaker] = {
            name: get_provider_breaker(name, excluded_exceptions=excluded) for name in ADAPTERS
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    def get_circuit_breaker_status(self) -> Dict[str, dict]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def _resolve(self, provider: Optional[str]) -> ProviderAdapter:
        return get_adapter(provider or self.config.default_provider)

    def _api_key(self, adapter: ProviderAdapter) -> str:
        key = self.config.api_key_for(adapter.name)
        if not key:
            raise AuthenticationError(
                f"Missing {adapter.name.upper()}_API_KEY environment variable",
                error_code="MISSING_API_KEY",
                provider=adapter.name,
            )
        return key

    async def _send(
        self,
        adapter: ProviderAdapter,
        endpoint: Endpoint,
        timeout: float,
        **request_kwargs: Any,
    ) -> Dict[str, Any]:
        """One HTTP round trip. Every failure leaves as a VideoGenerationError."""
        url = f"{self.config.base_url_for(adapter.name)}{endpoint.path}"
        headers = adapter.headers(self._api_key(adapter))
        client = await self._get_client()

        try:
            response = await client.request(
                endpoint.method, url, headers=headers, timeout=timeout, **request_kwargs
            )
            response.raise_for_status()
            return response.json()
        except Exception as e:
            raise map_provider_error(e, adapter.name) from e

    def _emit_progress(self, on_progress: Optional[ProgressCallback], percent: int, state: str):
        """Emit progress update via callback."""
        if on_progress:
            try:
                on_progress(percent, state)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_task(
        self,
        prompt: str,
        aspect_ratio: str = "9:16",
        options: Optional[CreateTaskOptions] = None,
        provider: Optional[str] = None,
    ) -> CreateTaskResult:
        """
        Submit a generation task.

        Each model in the fallback sequence gets a full retry_with_backoff run.
        Errors that retrying cannot fix (auth, credits, validation,
        maintenance) and an open circuit stop the sequence at once.

        Raises:
            VideoGenerationError: The last failure once every model is exhausted
        """
        adapter = self._resolve(provider)
        options = options or CreateTaskOptions()
        if options.callback_url is None and self.config.callback_url:
            options = options.model_copy(update={"callback_url": self.config.callback_url})

        models = fallback_sequence(options.model)
        last_error: Optional[VideoGenerationError] = None

        for attempt, model in enumerate(models, start=1):
            payload = adapter.build_create_payload(prompt, aspect_ratio, model, options)
            logger.info(
                f"{adapter.name} create attempt {attempt}/{len(models)}: "
                f"model={payload['model']}, prompt={prompt[:50]}..."
            )
            try:
                result = await self._create_once(adapter, payload, model)
            except VideoGenerationError as e:
                last_error = e
                if not e.retryable or e.error_code == "CIRCUIT_BREAKER_OPEN":
                    logger.error(f"{adapter.name} create failed, not retrying: {e}")
                    raise
                logger.warning(f"{adapter.name} create failed with model {model}: {e}")
                continue

            logger.info(f"{adapter.name} task created: {result.task_id}")
            return result

        raise last_error

    async def _create_once(
        self, adapter: ProviderAdapter, payload: Dict[str, Any], model: str
    ) -> CreateTaskResult:
        not_found: Optional[VideoGenerationError] = None

        for endpoint in adapter.create_endpoints:

            async def send(endpoint: Endpoint = endpoint) -> Dict[str, Any]:
                return await self._send(adapter, endpoint, self.config.create_timeout, json=payload)

            try:
                body = await self._guarded(adapter, send)
            except TaskNotFoundError as e:
                logger.warning(f"{adapter.name} create endpoint returned 404: {endpoint.path}")
                not_found = e
                continue
            return adapter.parse_create(body, model)

        raise not_found or TaskNotFoundError(
            f"{adapter.name.upper()} API error: no valid create endpoint found",
            provider=adapter.name,
            status_code=404,
        )

    async def _guarded(self, adapter: ProviderAdapter, fn, is_retryable=is_transient_status):
        """
        Run fn with backoff, inside the provider's circuit breaker.

        The breaker sees one outcome per retried call, so a single create
        attempt counts as at most one failure however many sends it took.
        """
        breaker = self._breakers[adapter.name]
        try:
            return await breaker.call(self._with_backoff, fn, adapter.name, is_retryable)
        except VideoGenerationError:
            raise
        except Exception as e:
            raise map_provider_error(e, adapter.name) from e

    async def _with_backoff(self, fn, provider: str, is_retryable=is_transient_status):
        try:
            return await retry_with_backoff(
                fn,
                max_retries=self.config.max_retries,
                initial_delay=self.config.initial_retry_delay,
                is_retryable=is_retryable,
                sleep=self._sleep,
            )
        except VideoGenerationError:
            raise
        except Exception as e:
            raise map_provider_error(e, provider) from e

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_task_details(self, task_id: str, provider: Optional[str] = None) -> TaskDetail:
        """
        Fetch the current state of a task.

        Candidate endpoints are tried in order; 404/405 moves to the next
        one. The whole lookup is retried on 404, 429 and 5xx.

        Raises:
            TaskNotFoundError: No candidate endpoint knows the task
            VideoGenerationError: Any other failure
        """
        adapter = self._resolve(provider)

        async def lookup() -> TaskDetail:
            return await self._lookup_status(adapter, task_id)

        return await self._guarded(adapter, lookup, is_retryable=_is_retryable_lookup)

    async def _lookup_status(self, adapter: ProviderAdapter, task_id: str) -> TaskDetail:
        for endpoint in adapter.status_endpoints:
            try:
                body = await self._send(
                    adapter,
                    endpoint,
                    self.config.status_timeout,
                    **adapter.status_request(endpoint, task_id),
                )
            except VideoGenerationError as e:
                if e.status_code in (404, 405):
                    logger.debug(
                        f"{adapter.name} status endpoint {endpoint.method} {endpoint.path} "
                        f"returned {e.status_code}"
                    )
                    continue
                raise
            return adapter.parse_status(body, task_id)

        raise TaskNotFoundError(
            f"{adapter.name.upper()} API error: task {task_id} not found on any status endpoint",
            provider=adapter.name,
            status_code=404,
        )

    async def poll_task_until_complete(
        self,
        task_id: str,
        provider: Optional[str] = None,
        max_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TaskDetail:
        """
        Poll until the task succeeds, fails, or the attempt budget runs out.

        A task the provider cannot find yet consumes an attempt without
        failing. Progress is estimated from the attempt count and capped
        at 95 until the task actually finishes.

        Raises:
            GenerationFailedError: Provider reported the task failed
            PollTimeoutError: Budget exhausted while still waiting
        """
        adapter = self._resolve(provider)
        max_attempts = self.config.poll_max_attempts if max_attempts is None else max_attempts
        poll_interval = self.config.poll_interval if poll_interval is None else poll_interval

        attempts = 0
        while attempts < max_attempts:
            attempts += 1

            try:
                detail = await self.get_task_details(task_id, adapter.name)
            except TaskNotFoundError:
                logger.warning(
                    f"{adapter.name} task {task_id} not found yet "
                    f"(attempt {attempts}/{max_attempts})"
                )
                if attempts < max_attempts:
                    await self._sleep(poll_interval)
                continue

            logger.info(
                f"{adapter.name} task {task_id} state: {detail.state.value} "
                f"(attempt {attempts}/{max_attempts})"
            )
            # Half-up rounding
            progress = min(95, int(attempts / max_attempts * 100 + 0.5))
            self._emit_progress(on_progress, progress, detail.state.value)

            if detail.state == TaskState.SUCCESS:
                logger.info(f"{adapter.name} task {task_id} completed successfully")
                return detail

            if detail.state == TaskState.FAIL:
                reason = detail.fail_reason or detail.fail_code or "Video generation failed"
                logger.error(f"{adapter.name} task {task_id} failed: {reason}")
                raise GenerationFailedError(
                    f"Sora video generation failed: {reason}",
                    fail_reason=reason,
                    provider=adapter.name,
                )

            if attempts < max_attempts:
                await self._sleep(poll_interval)

        raise PollTimeoutError(
            f"Task {task_id} timed out after {max_attempts} attempts",
            provider=adapter.name,
        )

    # ------------------------------------------------------------------
    # Create + poll
    # ------------------------------------------------------------------

    @observe(name="provider_generate_video")
    async def generate_video(
        self,
        prompt: str,
        aspect_ratio: str = "9:16",
        options: Optional[CreateTaskOptions] = None,
        provider: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TaskDetail:
        """
        Create a task and wait for its video.

        Returns:
            The successful TaskDetail; video_url is guaranteed to be set
        """
        created = await self.create_task(prompt, aspect_ratio, options, provider)
        self._emit_progress(on_progress, 5, "created")

        detail = await self.poll_task_until_complete(
            created.task_id,
            provider=created.provider,
            on_progress=on_progress,
        )

        if not detail.video_url:
            raise GenerationFailedError(
                f"Task {created.task_id} finished without a video URL",
                error_code="NO_VIDEO_URL",
                provider=created.provider,
            )
        self._emit_progress(on_progress, 100, "complete")
        return detail
