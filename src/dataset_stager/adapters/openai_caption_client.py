"""OpenAI chat completions client for image captioning."""

from dataclasses import dataclass

from openai import APIError, AsyncOpenAI

from dataset_stager.domain.errors import CaptioningError
from dataset_stager.services.captions import CaptionClient, CaptionRequest


@dataclass
class OpenAICaptionClient(CaptionClient):
    """Caption client backed by an OpenAI vision-capable chat model."""

    client: AsyncOpenAI
    model: str = "gpt-4o"
    max_tokens: int = 300
    image_detail: str = "high"

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        api_key: str,
        *,
        model: str,
        max_tokens: int,
        image_detail: str,
        timeout_seconds: float,
    ) -> "OpenAICaptionClient":
        """Create a client; SDK retries are disabled in favour of the retry policy."""
        return cls(
            client=AsyncOpenAI(
                api_key=api_key, max_retries=0, timeout=timeout_seconds
            ),
            model=model,
            max_tokens=max_tokens,
            image_detail=image_detail,
        )

    async def caption(self, request: CaptionRequest) -> str:
        """Send the prompt and image in one user message and return the text."""
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": request.prompt},
                            {
                                "type": "image_url",
                                "image_url": {
                                    "url": request.image_data_url,
                                    "detail": self.image_detail,
                                },
                            },
                        ],
                    }
                ],
                max_tokens=self.max_tokens,
            )
        except APIError as exc:
            raise CaptioningError(
                f"OpenAI request failed: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc

        if not completion.choices:
            raise CaptioningError("OpenAI returned no choices")
        content = completion.choices[0].message.content
        if not content or not content.strip():
            raise CaptioningError("OpenAI returned an empty caption")
        return content

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()
