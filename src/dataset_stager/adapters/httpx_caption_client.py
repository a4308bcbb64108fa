"""HTTP client for a remote captioning service."""

from dataclasses import dataclass

import httpx

from dataset_stager.domain.errors import CaptioningError
from dataset_stager.services.captions import CaptionClient, CaptionRequest


@dataclass
class HttpxCaptionClient(CaptionClient):
    """Posts ``{image, productName, triggerWord}`` and reads ``{result}``."""

    service_url: str
    http_client: httpx.AsyncClient
    timeout_seconds: float = 60.0

    @classmethod
    def create(cls, service_url: str, timeout_seconds: float) -> "HttpxCaptionClient":
        """Create a caption client with a managed httpx session."""
        return cls(
            service_url=service_url,
            http_client=httpx.AsyncClient(),
            timeout_seconds=timeout_seconds,
        )

    async def caption(self, request: CaptionRequest) -> str:
        """Request one caption; any non-success status raises ``CaptioningError``."""
        try:
            response = await self.http_client.post(
                self.service_url,
                json={
                    "image": request.image_data_url,
                    "productName": request.product_name,
                    "triggerWord": request.trigger_word,
                    "prompt": request.prompt,
                },
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise CaptioningError(f"Caption service unreachable: {exc}") from exc

        payload = _json_or_empty(response)
        if not response.is_success:
            error = payload.get("error") or response.reason_phrase
            raise CaptioningError(
                f"Caption service returned {response.status_code}: {error}",
                status_code=response.status_code,
            )
        result = payload.get("result")
        if not isinstance(result, str) or not result.strip():
            raise CaptioningError("Caption service returned no result")
        return result

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def _json_or_empty(response: httpx.Response) -> dict[str, object]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
