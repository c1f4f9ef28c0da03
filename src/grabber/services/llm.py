import asyncio
import base64
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from langchain_core.messages import HumanMessage
from langchain_ollama import ChatOllama

from grabber.core.errors import ErrorKind, GrabberError

logger = logging.getLogger(__name__)


class OllamaClient:
    """
    LangChain-based Ollama client with retry logic and proper connection handling.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        vision_model: Optional[str] = None,
        temperature: float = 0.1,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 120.0,
    ):
        # ChatOllama uses Ollama's native API, not the OpenAI-compatible /v1 endpoint
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]
        elif base_url.endswith("/v1/"):
            base_url = base_url[:-4]

        self.base_url = base_url.rstrip('/')
        self.model = model
        self.vision_model = vision_model or model
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        self.llm = ChatOllama(
            base_url=self.base_url,
            model=model,
            temperature=temperature,
            num_ctx=16384,
            format="json",
        )
        self.vision_llm = ChatOllama(
            base_url=self.base_url,
            model=self.vision_model,
            temperature=temperature,
            format="json",
        )

    async def _invoke_with_retry(self, llm: ChatOllama, messages: List[HumanMessage]) -> Any:
        """
        Invoke LLM with retry logic for connection failures.
        """
        last_exception: Optional[BaseException] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await asyncio.wait_for(llm.ainvoke(messages), timeout=self.timeout)

            except asyncio.TimeoutError:
                last_exception = GrabberError(
                    f"LLM request timed out after {self.timeout}s",
                    ErrorKind.NETWORK,
                )
                logger.warning(f"Attempt {attempt}/{self.max_retries}: Timeout, retrying...")

            except Exception as e:
                error_msg = str(e)

                if "connection" in error_msg.lower() or "connect" in error_msg.lower():
                    last_exception = GrabberError(
                        f"Cannot reach Ollama at {self.base_url}: {error_msg}",
                        ErrorKind.NETWORK,
                    )
                    logger.warning(
                        f"Attempt {attempt}/{self.max_retries}: Connection error - {error_msg} (base_url={self.base_url}, model={llm.model})"
                    )
                else:
                    # For non-connection errors, don't retry
                    raise

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        raise last_exception or GrabberError("All connection attempts failed", ErrorKind.NETWORK)

    async def evaluate(self, prompt: str) -> Dict[str, Any]:
        """
        Evaluate a prompt and return the response with metadata.
        """
        start = time.time()

        response = await self._invoke_with_retry(self.llm, [HumanMessage(content=prompt)])

        latency_ms = int((time.time() - start) * 1000)

        return {
            "raw": response,
            "content": response.content,
            "latency_ms": latency_ms,
        }

    async def _download_image(self, url: str) -> str:
        async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
            resp = await client.get(url)
            resp.raise_for_status()

        content_type = resp.headers.get("content-type", "image/jpeg").split(";")[0]
        encoded = base64.b64encode(resp.content).decode("ascii")
        return f"data:{content_type};base64,{encoded}"

    async def describe_image(self, url: str, prompt: str) -> Dict[str, Any]:
        """
        Run a vision prompt over a remote image. Ollama only accepts inline images,
        so the image is downloaded first.
        """
        start = time.time()
        data_url = await self._download_image(url)

        message = HumanMessage(content=[
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": data_url},
        ])
        response = await self._invoke_with_retry(self.vision_llm, [message])

        return {
            "raw": response,
            "content": response.content,
            "latency_ms": int((time.time() - start) * 1000),
        }

    async def health_check(self) -> bool:
        """
        Check if the Ollama server is reachable by calling /api/tags.
        """
        url = f"{self.base_url}/api/tags"
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(url)
                if resp.status_code == 200:
                    return True
                logger.error(f"Ollama health check failed: {resp.status_code} {resp.text}")
                return False
        except httpx.HTTPError as e:
            logger.error(f"Ollama health check error: {e} (url={url})")
            return False
