"""Inference backends producing streamed completions."""

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Protocol

from openai import NotFoundError, OpenAI, OpenAIError

from .config import config
from .errors import ResourceMissingError
from .models import SamplingParameters

logger = config.get_logger(__name__)


class ModelHandle(Protocol):
    """A loaded model able to stream completions.

    Not safe for concurrent use; the conversation engine serializes calls.
    """

    def generate(self, prompt: str, sampling: SamplingParameters) -> Iterator[str]:
        """Stream text tokens; closing the iterator cancels the request."""
        ...

    def close(self) -> None: ...


class InferenceBackend(Protocol):
    """Loads models and hands out generation handles."""

    def load(self, model_path: str, context_size: int, gpu_layers: int) -> ModelHandle:
        """Load a model.

        Raises:
            ResourceMissingError: If the model cannot be found.
        """
        ...


@dataclass
class OpenAICompletionHandle:
    """Streaming completions for one model on an OpenAI-compatible server."""

    client: OpenAI
    model: str
    context_size: int
    gpu_layers: int

    def generate(self, prompt: str, sampling: SamplingParameters) -> Iterator[str]:
        """Stream completion text for a raw prompt.

        Yields:
            Text fragments in generation order, typically one token each.
        """
        stream = self.client.completions.create(
            model=self.model,
            prompt=prompt,
            stream=True,
            temperature=sampling.temperature,
            top_p=sampling.top_p,
            max_tokens=sampling.max_tokens,
            extra_body={
                "top_k": sampling.top_k,
                "repeat_penalty": sampling.repeat_penalty,
            },
        )
        try:
            for chunk in stream:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].text
                if text:
                    yield text
        finally:
            stream.close()

    def close(self) -> None:
        self.client.close()


class OpenAICompletionBackend:
    """Inference backend for llama.cpp, Ollama, vLLM and similar servers.

    The server owns the weights; ``load`` checks that it serves the model.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        """Initialize the backend with server credentials.

        Args:
            api_key: API key. If None, reads from OPENAI_API_KEY.
            base_url: Server URL. If None, uses config.OPENAI_BASE_URL.
        """
        self.api_key = api_key or config.get_openai_api_key()
        self.base_url = base_url or config.OPENAI_BASE_URL

    def load(
        self, model_path: str, context_size: int, gpu_layers: int
    ) -> OpenAICompletionHandle:
        """Connect to the server and verify it serves ``model_path``.

        Returns:
            A handle bound to the model.

        Raises:
            ResourceMissingError: If no API key is set or the model is unknown.
        """
        if not self.api_key:
            msg = "OPENAI_API_KEY is required for the inference backend"
            raise ResourceMissingError(msg)

        default_headers = config.get_api_headers()
        client = OpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            default_headers=default_headers or None,
        )
        try:
            client.models.retrieve(model_path)
        except NotFoundError as exc:
            client.close()
            msg = f"Model not found on inference server: {model_path}"
            raise ResourceMissingError(msg) from exc
        except OpenAIError:
            client.close()
            logger.exception("Error contacting inference server %s", self.base_url)
            raise

        logger.info(
            "Loaded model %s (context %d, gpu layers %d)",
            model_path,
            context_size,
            gpu_layers,
        )
        return OpenAICompletionHandle(
            client=client,
            model=model_path,
            context_size=context_size,
            gpu_layers=gpu_layers,
        )
