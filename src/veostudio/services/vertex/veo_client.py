"""Vertex AI Veo client for long-running video generation operations.

Start job:
  POST {model_url}:predictLongRunning  ->  {"name": "<operation name>"}

Poll status:
  POST {model_url}:fetchPredictOperation  with {"operationName": "<operation name>"}
  ->  {"done": bool, "error"?: {code, message}, "response"?: {"videos": [...]}}
"""

import base64
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from veostudio.core.config import VertexConfig
from veostudio.services.exceptions import (
    MalformedUpstreamResponse,
    TransientUpstreamError,
    UpstreamBillingError,
    UpstreamError,
)

logger = structlog.get_logger(__name__)

DEFAULT_ASPECT_RATIO = "16:9"
FRAME_SIZE_ASPECT_RATIOS = {
    "1280x720": "16:9",
    "720x1280": "9:16",
    "1080x1080": "1:1",
    "4:3": "4:3",
    "3:4": "3:4",
    "21:9": "21:9",
}

# Error codes that mean "keep waiting" while the operation is not done:
# google.rpc DEADLINE_EXCEEDED (4), RESOURCE_EXHAUSTED (8), UNAVAILABLE (14), HTTP 429 and 503
TRANSIENT_ERROR_CODES = frozenset({4, 8, 14, 429, 503})
TRANSIENT_ERROR_MARKERS = ("high load", "resource exhausted", "rate limit")


def aspect_ratio_for_size(frame_size: str | None) -> str:
    """Map a requested frame size to a Veo aspect ratio, widescreen by default."""
    return FRAME_SIZE_ASPECT_RATIOS.get(frame_size or "", DEFAULT_ASPECT_RATIO)


@dataclass(frozen=True)
class ReferenceMedia:
    """Uploaded reference image or video."""

    data: bytes
    mime_type: str = "image/png"

    def to_payload(self) -> dict[str, str]:
        return {
            "mimeType": self.mime_type or "image/png",
            "bytesBase64Encoded": base64.b64encode(self.data).decode("ascii"),
        }


def build_instance(prompt: str, reference_media: list[ReferenceMedia] | None = None) -> dict:
    """Build the predict instance.

    One reference goes in ``image``; several go in ``reference_images``.
    Empty uploads are skipped.
    """
    instance: dict[str, Any] = {"prompt": prompt}
    media = [m for m in (reference_media or []) if m.data]
    if len(media) == 1:
        instance["image"] = media[0].to_payload()
    elif media:
        instance["reference_images"] = [m.to_payload() for m in media]
    return instance


def build_parameters(
    duration_seconds: int,
    frame_size: str,
    generate_audio: bool = False,
    resolution: str | None = None,
) -> dict:
    """Build the generation parameters for predictLongRunning."""
    return {
        "sampleCount": 1,
        "durationSeconds": duration_seconds,
        "generateAudio": generate_audio,
        "resolution": resolution or "720p",
        "aspectRatio": aspect_ratio_for_size(frame_size),
        "personGeneration": "allow_all",
        "includeRaiReason": True,
        "addWatermark": True,
    }


@dataclass
class OperationStatus:
    """Parsed fetchPredictOperation response."""

    done: bool
    error_code: int | None = None
    error_message: str | None = None
    videos: list[dict] = field(default_factory=list)

    @property
    def has_error(self) -> bool:
        return self.error_code is not None or self.error_message is not None

    @property
    def is_transient_error(self) -> bool:
        """Retryable error on an operation that is still running."""
        if not self.has_error or self.done:
            return False
        message = (self.error_message or "").lower()
        return self.error_code in TRANSIENT_ERROR_CODES or any(
            marker in message for marker in TRANSIENT_ERROR_MARKERS
        )

    def raise_for_transient_error(self) -> None:
        """Raise TransientUpstreamError if the caller should keep waiting."""
        if self.is_transient_error:
            raise TransientUpstreamError(
                f"Operation error ({self.error_code}): {self.error_message}"
            )

    def result_uri(self) -> str | None:
        """First usable artifact: inline bytes become a data URI, else the GCS URI."""
        for video in self.videos:
            if not isinstance(video, dict):
                continue
            encoded = video.get("bytesBase64Encoded")
            if encoded:
                mime_type = video.get("mimeType") or "video/mp4"
                return f"data:{mime_type};base64,{encoded}"
            if video.get("gcsUri"):
                return video["gcsUri"]
        return None

    @classmethod
    def from_payload(cls, payload: Any) -> "OperationStatus":
        """Parse the operation JSON.

        Raises:
            MalformedUpstreamResponse: If the payload is not a JSON object
        """
        if not isinstance(payload, dict):
            raise MalformedUpstreamResponse(f"Expected JSON object, got {type(payload).__name__}")

        error_code = None
        error_message = None
        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                error_code = error.get("code")
                error_message = error.get("message") or str(error)
            else:
                error_message = str(error)

        result = payload.get("response") or payload
        videos = result.get("videos") if isinstance(result, dict) else None

        return cls(
            done=bool(payload.get("done")),
            error_code=error_code,
            error_message=error_message,
            videos=list(videos or []),
        )


def _extract_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message", "")
    return ""


class VeoClient:
    """HTTP client for Veo predictLongRunning / fetchPredictOperation."""

    def __init__(self, config: VertexConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    def submit_url(self, model: str) -> str:
        return f"{self.config.model_url(model)}:predictLongRunning"

    def poll_url(self, model: str) -> str:
        return f"{self.config.model_url(model)}:fetchPredictOperation"

    async def start_generation(
        self,
        token: str,
        model: str,
        instance: dict,
        parameters: dict,
    ) -> str:
        """Submit a generation request and return the operation handle.

        Raises:
            UpstreamBillingError: Vertex reports billing is not enabled
            UpstreamError: Any other non-success status
            MalformedUpstreamResponse: Success status without an operation name
            httpx.HTTPError: Network failures and timeouts
        """
        async with httpx.AsyncClient(
            timeout=self.config.submit_timeout_seconds, transport=self._transport
        ) as client:
            response = await client.post(
                self.submit_url(model),
                headers={"Authorization": f"Bearer {token}"},
                json={"instances": [instance], "parameters": parameters},
            )

        if not response.is_success:
            message = _extract_error_message(response)
            logger.error(
                "veo.submit.rejected",
                status_code=response.status_code,
                error_message=message,
            )
            if "billing" in message.lower():
                raise UpstreamBillingError(message=message)
            raise UpstreamError(response.status_code, message)

        operation_name = response.json().get("name")
        if not operation_name:
            raise MalformedUpstreamResponse("predictLongRunning response has no operation name")
        return operation_name

    async def fetch_operation(
        self, token: str, model: str, operation_handle: str
    ) -> OperationStatus:
        """Fetch the current state of a long-running operation.

        Raises:
            MalformedUpstreamResponse: Non-JSON content type or undecodable body
            httpx.HTTPError: Network failures and timeouts
        """
        async with httpx.AsyncClient(
            timeout=self.config.poll_timeout_seconds, transport=self._transport
        ) as client:
            response = await client.post(
                self.poll_url(model),
                headers={"Authorization": f"Bearer {token}"},
                json={"operationName": operation_handle},
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise MalformedUpstreamResponse(
                f"Non-JSON poll response ({response.status_code}, {content_type or 'no type'}): "
                f"{response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedUpstreamResponse(f"Undecodable poll response: {e}") from e

        return OperationStatus.from_payload(payload)
