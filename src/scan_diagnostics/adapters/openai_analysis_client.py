"""OpenAI Responses API client for batch image analysis."""

from dataclasses import dataclass

import openai
from openai import AsyncOpenAI

from scan_diagnostics.errors import AnalysisTransientError
from scan_diagnostics.services.analysis import AnalysisClient


@dataclass
class OpenAIAnalysisClient(AnalysisClient):
    """Analysis client backed by an OpenAI-compatible Responses API."""

    client: AsyncOpenAI

    @classmethod
    def create(
        cls, api_key: str, base_url: str | None = None, timeout: float = 300.0
    ) -> "OpenAIAnalysisClient":
        """Create an analysis client without SDK-level retries."""
        return cls(
            client=AsyncOpenAI(
                api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
            )
        )

    async def analyze(
        self,
        *,
        model: str,
        prompt: str,
        image_data_urls: list[str],
        max_output_tokens: int,
    ) -> str:
        """Send the prompt and images in one request and return the output text."""
        content: list[dict[str, object]] = [{"type": "input_text", "text": prompt}]
        content.extend(
            {"type": "input_image", "image_url": image_url}
            for image_url in image_data_urls
        )
        try:
            response = await self.client.responses.create(
                model=model,
                input=[{"role": "user", "content": content}],
                max_output_tokens=max_output_tokens,
                store=False,
            )
        except openai.APIStatusError as exc:
            raise AnalysisTransientError(
                f"Analysis request failed: {exc.message}", status_code=exc.status_code
            ) from exc
        except openai.APIError as exc:
            raise AnalysisTransientError(f"Analysis request failed: {exc}") from exc

        output_text = response.output_text
        if not output_text:
            raise AnalysisTransientError("Analysis service returned an empty response")
        return output_text

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.close()
