from __future__ import annotations

import logging
from typing import Optional

import google.generativeai as genai
import httpx

from services.verification import FilePart, TextPart, VerificationRequest

logger = logging.getLogger(__name__)

# Files already uploaded through the Gemini File API can be referenced directly
GEMINI_FILE_API_PREFIX = "https://generativelanguage.googleapis.com/"


def download_url(uri: str, storage_base_url: str) -> Optional[str]:
    """
    HTTP location to fetch a stored file from, or None when Gemini can
    resolve the URI itself. ``gs://bucket/path`` maps onto ``storage_base_url``.
    """
    if uri.startswith(GEMINI_FILE_API_PREFIX):
        return None
    if uri.startswith("gs://"):
        return f"{storage_base_url.rstrip('/')}/{uri[len('gs://'):]}"
    if uri.startswith(("http://", "https://")):
        return uri
    raise ValueError(f"cannot fetch evidence file {uri!r}")


class GeminiOracle:
    """
    Multimodal verifier backed by Gemini.

    The Gemini Developer API only resolves File API URIs, so evidence held in
    object storage is downloaded and sent inline with the prompt.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-1.5-flash",
        temperature: float = 0.1,
        storage_base_url: str = "https://storage.googleapis.com",
        download_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.storage_base_url = storage_base_url
        self.download_timeout = download_timeout
        self._transport = transport
        self._model = genai.GenerativeModel(model_name)
        self._generation_config = genai.types.GenerationConfig(
            temperature=temperature,
            max_output_tokens=2048,
            response_mime_type="application/json",
        )
        logger.info("Gemini oracle ready (model=%s)", model_name)

    async def _to_part(self, part, client: httpx.AsyncClient):
        if isinstance(part, TextPart):
            return genai.protos.Part(text=part.text)
        if isinstance(part, FilePart):
            url = download_url(part.uri, self.storage_base_url)
            if url is None:
                return genai.protos.Part(
                    file_data=genai.protos.FileData(file_uri=part.uri, mime_type=part.mime_type)
                )
            response = await client.get(url)
            response.raise_for_status()
            logger.debug("Fetched %s (%s bytes)", part.uri, len(response.content))
            return genai.protos.Part(
                inline_data=genai.protos.Blob(mime_type=part.mime_type, data=response.content)
            )
        raise TypeError(f"unsupported request part {part!r}")

    async def build_contents(self, request: VerificationRequest) -> list[dict]:
        async with httpx.AsyncClient(timeout=self.download_timeout, transport=self._transport) as client:
            parts = [await self._to_part(p, client) for p in request.parts]
        return [{"role": "user", "parts": parts}]

    async def generate(self, request: VerificationRequest) -> str:
        contents = await self.build_contents(request)
        resp = await self._model.generate_content_async(
            contents,
            generation_config=self._generation_config,
        )
        return resp.text
