"""
Provider adapters for Kie and Poyo.

Each adapter owns one provider's wire format: endpoint candidates, the
create payload, and how responses map onto CreateTaskResult/TaskDetail.
Both providers wrap payloads in a {"code", "msg", "data"} envelope and may
report errors with HTTP 200 plus a non-200 envelope code.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import ProviderError, error_for_status
from .models import (
    CreateTaskOptions,
    CreateTaskResult,
    TaskDetail,
    TaskState,
    normalize_state,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Endpoint:
    """One HTTP route a provider might serve."""
    method: str
    path: str


def is_portrait(aspect_ratio: Optional[str]) -> bool:
    """Anything that is not explicitly landscape renders vertical."""
    return (aspect_ratio or "").lower() not in ("16:9", "horizontal", "landscape")


class ProviderAdapter:
    """Base adapter. Subclasses fill in the provider-specific pieces."""

    name: str = ""
    create_endpoints: List[Endpoint] = []
    status_endpoints: List[Endpoint] = []
    model_map: Dict[str, str] = {}

    def provider_model(self, model: str) -> str:
        return self.model_map.get(model, model)

    def headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_create_payload(
        self, prompt: str, aspect_ratio: str, model: str, options: CreateTaskOptions
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def status_request(self, endpoint: Endpoint, task_id: str) -> Dict[str, Any]:
        """httpx request kwargs (params or json) for a status lookup."""
        raise NotImplementedError

    def parse_create(self, body: Dict[str, Any], model: str) -> CreateTaskResult:
        raise NotImplementedError

    def parse_status(self, body: Dict[str, Any], task_id: str) -> TaskDetail:
        raise NotImplementedError

    def _check_envelope(self, body: Dict[str, Any]):
        code = body.get("code")
        if code is None or code == 200:
            return
        detail = body.get("msg") or body.get("message") or "Unexpected response"
        status = code if isinstance(code, int) else 500
        raise error_for_status(status, self.name, detail=detail)


class KieAdapter(ProviderAdapter):
    name = "kie"
    create_endpoints = [Endpoint("POST", "/jobs/createTask")]
    status_endpoints = [Endpoint("GET", "/jobs/recordInfo")]
    model_map = {
        "sora-2": "sora-2-text-to-video",
        "sora-2-private": "sora-2-text-to-video-private",
        "sora-2-stable": "sora-2-text-to-video-stable",
    }

    # Kie caps n_frames at 15
    max_frames = 15

    def build_create_payload(self, prompt, aspect_ratio, model, options):
        payload_input: Dict[str, Any] = {
            "prompt": prompt,
            "aspect_ratio": "portrait" if is_portrait(aspect_ratio) else "landscape",
            "n_frames": str(min(options.duration_seconds, self.max_frames)),
            "remove_watermark": options.remove_watermark,
        }
        if options.character_ids:
            payload_input["character_id_list"] = options.character_ids
        if options.language:
            payload_input["language"] = options.language

        payload: Dict[str, Any] = {"model": self.provider_model(model), "input": payload_input}
        if options.callback_url:
            payload["callBackUrl"] = options.callback_url
        return payload

    def status_request(self, endpoint, task_id):
        return {"params": {"taskId": task_id}}

    def parse_create(self, body, model):
        self._check_envelope(body)
        data = body.get("data") or {}
        task_id = data.get("taskId")
        if not task_id:
            raise ProviderError(
                "KIE API error: missing task id in create task response",
                error_code="NO_TASK_ID",
                provider=self.name,
            )
        return CreateTaskResult(
            task_id=task_id,
            provider=self.name,
            model=self.provider_model(model),
            status=data.get("status"),
            created_time=_as_str(data.get("createdTime")),
        )

    def parse_status(self, body, task_id):
        if body.get("code") not in (None, 200):
            # Freshly created tasks are not queryable for a short while
            if "recordInfo is null" in (body.get("msg") or ""):
                return TaskDetail(task_id=task_id, provider=self.name, state=TaskState.WAITING)
            self._check_envelope(body)

        data = body.get("data") or {}
        return TaskDetail(
            task_id=data.get("taskId") or task_id,
            provider=self.name,
            state=normalize_state(data.get("state")),
            result_urls=_parse_result_json(data.get("resultJson")),
            fail_reason=data.get("failMsg"),
            fail_code=_as_str(data.get("failCode")),
            model=data.get("model"),
        )


class PoyoAdapter(ProviderAdapter):
    name = "poyo"
    create_endpoints = [Endpoint("POST", "/api/generate/submit")]
    status_endpoints = [
        Endpoint("GET", "/api/task/status"),
        Endpoint("POST", "/api/task/status"),
        Endpoint("GET", "/api/generate/status"),
        Endpoint("POST", "/api/generate/status"),
    ]
    # Poyo only serves sora-2 and sora-2-private
    model_map = {
        "sora-2": "sora-2",
        "sora-2-private": "sora-2-private",
        "sora-2-stable": "sora-2",
    }

    def build_create_payload(self, prompt, aspect_ratio, model, options):
        payload_input: Dict[str, Any] = {
            "prompt": prompt,
            "duration": 15 if options.duration_seconds > 10 else 10,
            "aspect_ratio": "9:16" if is_portrait(aspect_ratio) else "16:9",
        }
        if options.image_urls:
            payload_input["image_urls"] = options.image_urls
        if options.style:
            payload_input["style"] = options.style

        payload: Dict[str, Any] = {"model": self.provider_model(model), "input": payload_input}
        if options.callback_url:
            payload["callback_url"] = options.callback_url
        return payload

    def status_request(self, endpoint, task_id):
        if endpoint.method == "GET":
            return {"params": {"task_id": task_id}}
        return {"json": {"task_id": task_id}}

    def parse_create(self, body, model):
        self._check_envelope(body)
        data = body.get("data") or {}
        task_id = data.get("task_id")
        if not task_id:
            raise ProviderError(
                "POYO API error: missing task id in create task response",
                error_code="NO_TASK_ID",
                provider=self.name,
            )
        return CreateTaskResult(
            task_id=task_id,
            provider=self.name,
            model=self.provider_model(model),
            status=data.get("status"),
            created_time=_as_str(data.get("created_time")),
        )

    def parse_status(self, body, task_id):
        self._check_envelope(body)
        data = body.get("data") or {}
        error = body.get("error") or data.get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}

        return TaskDetail(
            task_id=data.get("task_id") or task_id,
            provider=self.name,
            state=normalize_state(data.get("status") or data.get("state")),
            result_urls=_poyo_result_urls(data),
            fail_reason=error.get("message") or data.get("error_message"),
            fail_code=error.get("type"),
            model=data.get("model"),
        )


ADAPTERS: Dict[str, ProviderAdapter] = {
    "kie": KieAdapter(),
    "poyo": PoyoAdapter(),
}


def get_adapter(provider: str) -> ProviderAdapter:
    adapter = ADAPTERS.get(provider)
    if adapter is None:
        raise ValueError(f"Unknown video provider: {provider}")
    return adapter


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _parse_result_json(raw: Any) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, dict):
        parsed = raw
    else:
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Failed to parse resultJson: {str(raw)[:100]}")
            return []
    urls = parsed.get("resultUrls") if isinstance(parsed, dict) else None
    return [url for url in urls or [] if url]


def _poyo_result_urls(data: Dict[str, Any]) -> List[str]:
    # Poyo has shipped several response shapes; take the first URL found.
    # "output" and "result" may be a dict, a bare URL or a list of URLs.
    nested = [data.get("output"), data.get("result")]
    dicts = [n for n in nested if isinstance(n, dict)]

    candidates = [data.get("result_url"), data.get("video_url"), data.get("url")]
    candidates += [n for n in nested if isinstance(n, str)]
    candidates += [d.get("video_url") for d in dicts] + [d.get("url") for d in dicts]
    for candidate in candidates:
        if candidate and isinstance(candidate, str):
            return [candidate]

    url_lists = [data.get("video_urls")] + [n for n in nested if isinstance(n, list)]
    url_lists += [d.get("urls") for d in dicts]
    for urls in url_lists:
        if isinstance(urls, list) and urls:
            return [url for url in urls if isinstance(url, str) and url]
    return []
