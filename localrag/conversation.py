"""Conversation engine streaming model output with turn-boundary detection."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from .channel import StreamChannel
from .config import config
from .errors import (
    ConfigurationError,
    EngineBusyError,
    GenerationError,
    NotReadyError,
)
from .models import EngineState, Role, SamplingParameters, Turn
from .prompting import SUMMARY_TEMPLATE, InstructionFormat, StopSequenceScanner

if TYPE_CHECKING:
    from .inference import InferenceBackend, ModelHandle

logger = config.get_logger(__name__)

SAFETY_NOTICE = "\n[stopped: safety token limit reached]\n"


class ContextRetriever(Protocol):
    """Anything that can turn a query into a context block."""

    def retrieve(self, query: str, top_k: int | None = None) -> str: ...


class StopReason(str, Enum):
    """Why a generation ended."""

    END_OF_STREAM = "end_of_stream"
    STOP_MARKER = "stop_marker"
    MAX_TOKENS = "max_tokens"
    SAFETY_LIMIT = "safety_limit"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TurnOutcome:
    """Result handed from the producer to the consumer when a turn ends.

    ``assistant_text`` is None when nothing should be committed.
    """

    stop_reason: StopReason
    assistant_text: str | None = None
    token_count: int = 0


def _close_iterator(tokens: Iterator[str]) -> None:
    close = getattr(tokens, "close", None)
    if close is not None:
        close()


class ConversationEngine:
    """Owns the chat history and streams assistant replies from a model."""

    def __init__(  # noqa: PLR0913
        self,
        backend: InferenceBackend,
        *,
        retriever: ContextRetriever | None = None,
        model_path: str | None = None,
        sampling: SamplingParameters | None = None,
        system_prompt: str | None = None,
        context_size: int | None = None,
        gpu_layers: int | None = None,
        safety_max_tokens: int | None = None,
        retrieval_top_k: int | None = None,
        instruction_format: InstructionFormat | None = None,
    ) -> None:
        """Initialize the engine; the model is loaded by initialize().

        Args:
            backend: Inference backend that loads the model.
            retriever: Optional source of context blocks, typically the
                retrieval store.
            model_path: Model to load. If None, uses config.CHAT_MODEL.
            sampling: Sampling parameters. If None, built from config.
            system_prompt: Default system prompt. If None, uses
                config.SYSTEM_PROMPT.
            context_size: Context window. If None, uses config.CONTEXT_SIZE.
            gpu_layers: Layers offloaded to the GPU. If None, uses
                config.GPU_LAYERS.
            safety_max_tokens: Engine-level token ceiling. If None, uses
                config.SAFETY_MAX_TOKENS.
            retrieval_top_k: Context fragments per turn. If None, uses
                config.RAG_TOP_K.
            instruction_format: Marker vocabulary for prompts and stop
                detection. If None, uses the default format.

        Raises:
            ConfigurationError: If the safety ceiling is not positive.
        """
        self.backend = backend
        self.retriever = retriever
        self.model_path = model_path or config.CHAT_MODEL
        self.sampling = sampling or config.sampling_parameters()
        self.system_prompt = (
            system_prompt if system_prompt is not None else config.SYSTEM_PROMPT
        )
        self.context_size = context_size or config.CONTEXT_SIZE
        self.gpu_layers = gpu_layers if gpu_layers is not None else config.GPU_LAYERS
        self.safety_max_tokens = (
            safety_max_tokens
            if safety_max_tokens is not None
            else config.SAFETY_MAX_TOKENS
        )
        if self.safety_max_tokens < 1:
            msg = f"safety_max_tokens must be positive, got {self.safety_max_tokens}"
            raise ConfigurationError(msg)
        self.retrieval_top_k = retrieval_top_k or config.RAG_TOP_K
        self.instruction_format = instruction_format or InstructionFormat()
        self.summary_temperature = config.SUMMARY_TEMPERATURE
        self.summary_max_tokens = config.SUMMARY_MAX_TOKENS

        self._handle: ModelHandle | None = None
        self._history: list[Turn] = []
        self._state = EngineState.UNINITIALIZED
        self._state_lock = threading.Lock()
        # Held for every call into the model handle.
        self._inference_lock = threading.Lock()
        self._producers: set[threading.Thread] = set()
        self.last_stop_reason: StopReason | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None

    @property
    def history(self) -> tuple[Turn, ...]:
        with self._state_lock:
            return tuple(self._history)

    def render_history(self) -> str:
        """Prompt text for the committed history."""
        with self._state_lock:
            return self.instruction_format.render(self._history)

    def _primed_history(self, system_prompt: str) -> list[Turn]:
        if not system_prompt.strip():
            return []
        return [Turn(Role.SYSTEM, system_prompt)]

    def _require_ready(self) -> None:
        if self._state is EngineState.GENERATING:
            msg = "A generation is already in progress"
            raise EngineBusyError(msg)
        if self._state is not EngineState.READY:
            msg = "Conversation engine not initialized. Call initialize() first."
            raise NotReadyError(msg)

    def initialize(self) -> None:
        """Load the model and prime the history with the system prompt.

        Raises:
            NotReadyError: If the engine has been closed.
        """
        with self._state_lock:
            if self._state is EngineState.DISPOSED:
                msg = "Conversation engine has been closed"
                raise NotReadyError(msg)
            if self._handle is not None:
                return

            self._handle = self.backend.load(
                self.model_path, self.context_size, self.gpu_layers
            )
            self._history = self._primed_history(self.system_prompt)
            self._state = EngineState.READY

        logger.info("Conversation engine ready with model %s", self.model_path)

    def reset_conversation(self, new_system_prompt: str | None = None) -> None:
        """Clear the history and prime it with the given or default prompt."""
        with self._state_lock:
            self._require_ready()
            prompt = (
                new_system_prompt
                if new_system_prompt is not None
                else self.system_prompt
            )
            self._history = self._primed_history(prompt)
        logger.info("Conversation history reset")

    def stream_chat(
        self, user_message: str, cancel_event: threading.Event | None = None
    ) -> Iterator[str]:
        """Stream the assistant's reply to a user message.

        The reply is committed to the history once the stream ends normally.
        Errors are reported as a final inline diagnostic token. Setting
        ``cancel_event`` or closing the iterator aborts the turn without
        committing it.

        Returns:
            A lazy sequence of text tokens.
        """
        with self._state_lock:
            self._require_ready()
        return self._stream(user_message, cancel_event or threading.Event())

    def _stream(self, user_message: str, cancel_event: threading.Event) -> Iterator[str]:
        with self._state_lock:
            self._require_ready()
            self._state = EngineState.GENERATING
            history_prompt = self.instruction_format.render(self._history)

        channel: StreamChannel[str, TurnOutcome] = StreamChannel()
        producer_cancel = threading.Event()
        try:
            producer = threading.Thread(
                target=self._produce,
                args=(user_message, history_prompt, channel, producer_cancel),
                name="localrag-generation",
                daemon=True,
            )
            with self._state_lock:
                self._producers.add(producer)
            producer.start()

            try:
                yield from channel.consume(cancel_event)
            except GeneratorExit:
                self.last_stop_reason = StopReason.CANCELLED
                logger.info("Stream closed by consumer before the turn ended")
                raise

            if not channel.drained:
                self.last_stop_reason = StopReason.CANCELLED
                logger.info("Generation cancelled")
                return

            outcome = channel.result
            if outcome is None:
                return
            self.last_stop_reason = outcome.stop_reason
            if outcome.assistant_text is not None:
                with self._state_lock:
                    self._history.append(Turn(Role.USER, user_message))
                    self._history.append(Turn(Role.ASSISTANT, outcome.assistant_text))
                logger.info(
                    "Turn committed after %d tokens (%s)",
                    outcome.token_count,
                    outcome.stop_reason.value,
                )
        finally:
            producer_cancel.set()
            with self._state_lock:
                if self._state is EngineState.GENERATING:
                    self._state = EngineState.READY

    def _build_prompt(self, user_message: str, history_prompt: str) -> str:
        context = ""
        if self.retriever is not None:
            context = self.retriever.retrieve(user_message, top_k=self.retrieval_top_k)
        content = f"{context}\n{user_message}" if context else user_message
        return history_prompt + self.instruction_format.wrap_instruction(content)

    def _produce(
        self,
        user_message: str,
        history_prompt: str,
        channel: StreamChannel[str, TurnOutcome],
        cancel: threading.Event,
    ) -> None:
        outcome = TurnOutcome(StopReason.ERROR)
        try:
            with self._inference_lock:
                if cancel.is_set():
                    outcome = TurnOutcome(StopReason.CANCELLED)
                    return
                prompt = self._build_prompt(user_message, history_prompt)
                outcome = self._run_generation(prompt, channel, cancel)
        except Exception as exc:
            logger.exception("Generation failed")
            channel.put(f"\n[engine error: {exc}]\n")
            outcome = TurnOutcome(StopReason.ERROR)
        finally:
            channel.close(outcome)
            with self._state_lock:
                self._producers.discard(threading.current_thread())

    def _run_generation(
        self,
        prompt: str,
        channel: StreamChannel[str, TurnOutcome],
        cancel: threading.Event,
    ) -> TurnOutcome:
        handle = self._handle
        if handle is None:
            msg = "Model handle has been released"
            raise NotReadyError(msg)

        scanner = StopSequenceScanner(self.instruction_format.stop_markers)
        token_count = 0
        reason = StopReason.END_OF_STREAM
        tokens = handle.generate(prompt, self.sampling)
        try:
            for token in tokens:
                if cancel.is_set():
                    return TurnOutcome(StopReason.CANCELLED, token_count=token_count)
                token_count += 1
                channel.put(token)

                if scanner.feed(token) is not None:
                    reason = StopReason.STOP_MARKER
                    break
                if token_count >= self.sampling.max_tokens:
                    reason = StopReason.MAX_TOKENS
                    break
                if token_count >= self.safety_max_tokens:
                    channel.put(SAFETY_NOTICE)
                    reason = StopReason.SAFETY_LIMIT
                    break
        finally:
            _close_iterator(tokens)

        return TurnOutcome(
            reason,
            assistant_text=scanner.committed_text.strip(),
            token_count=token_count,
        )

    def summarize_chat(self, history_text: str) -> str:
        """Summarize a conversation transcript in one non-streamed generation.

        Returns:
            The summary with all turn-boundary markers removed.

        Raises:
            GenerationError: If the backend fails.
        """
        with self._state_lock:
            self._require_ready()
            self._state = EngineState.GENERATING

        sampling = replace(
            self.sampling,
            temperature=self.summary_temperature,
            max_tokens=self.summary_max_tokens,
        )
        prompt = self.instruction_format.wrap_instruction(
            SUMMARY_TEMPLATE.format(history=history_text)
        )
        parts: list[str] = []
        try:
            with self._inference_lock:
                handle = self._handle
                if handle is None:
                    msg = "Model handle has been released"
                    raise NotReadyError(msg)
                tokens = handle.generate(prompt, sampling)
                try:
                    for token in tokens:
                        parts.append(token)
                        if len(parts) >= sampling.max_tokens:
                            break
                finally:
                    _close_iterator(tokens)
        except NotReadyError:
            raise
        except Exception as exc:
            logger.exception("Summarization failed")
            msg = f"Summarization failed: {exc}"
            raise GenerationError(msg) from exc
        finally:
            with self._state_lock:
                if self._state is EngineState.GENERATING:
                    self._state = EngineState.READY

        summary = self.instruction_format.strip_markers("".join(parts))
        logger.info("Generated summary of %d characters", len(summary))
        return summary

    def close(self, timeout: float | None = None) -> None:
        """Release the model handle.

        Waits at most ``timeout`` seconds in total for an in-flight
        generation and its producer thread, then proceeds so shutdown never
        deadlocks.
        """
        timeout = config.SHUTDOWN_TIMEOUT if timeout is None else timeout
        if self._state is EngineState.DISPOSED:
            return

        deadline = time.monotonic() + timeout
        acquired = self._inference_lock.acquire(timeout=timeout)
        if not acquired:
            logger.warning(
                "Generation still running after %.1fs; closing anyway", timeout
            )
        try:
            with self._state_lock:
                handle, self._handle = self._handle, None
                self._history = []
                self._state = EngineState.DISPOSED
            if handle is not None:
                try:
                    handle.close()
                except Exception:
                    logger.exception("Error releasing model handle")
        finally:
            if acquired:
                self._inference_lock.release()
        self._join_producers(deadline, timeout)
        logger.info("Conversation engine closed")

    def _join_producers(self, deadline: float, timeout: float) -> None:
        with self._state_lock:
            producers = list(self._producers)
        for producer in producers:
            producer.join(max(0.0, deadline - time.monotonic()))
            if producer.is_alive():
                logger.warning(
                    "Generation thread %s still running after %.1fs",
                    producer.name,
                    timeout,
                )
