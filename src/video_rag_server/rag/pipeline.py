"""
Answer Pipeline

Orchestrates a question from validation to persisted answer, in batch mode
(``ask``) or streaming mode (``ask_stream``).

States
------
``VALIDATING -> EMBEDDING -> RETRIEVING -> CONTEXT_BUILDING -> GENERATING
-> PERSISTING -> COMPLETED``. Any failure before persistence ends in
``ERRORED``; a stream cancelled before its generator finished ends in
``CANCELLED``. Messages are written only after the generator finished, user
message first, so failed or cancelled questions leave no trace in the chat.

Streaming
---------
``ask_stream`` starts a producer task that writes ``StreamEvent`` objects to
the ``AnswerStream`` queue: one ``token`` per delta in arrival order, then
exactly one terminal ``done`` or ``error``. ``AnswerStream.cancel`` is the
consumer's disconnect signal. The producer waits on the next delta and the
cancellation token together, so a disconnect is seen without waiting for the
provider.

Concurrency
-----------
Questions on the same chat are serialized by a per-chat lock held from
validation to persistence, so each one sees the previous answer in its
history window. Different chats run concurrently. Deleting a chat takes the
same lock (``chat_lock``), so it waits for an in-flight answer to persist.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
)

from sqlalchemy.exc import IntegrityError

from .prompt import build_prompt
from .retrieval import RetrievalConfig, RetrievedChunk, retrieve
from ..core.errors import ChatNotFound, GenerationFailure, RagError
from ..embeddings.gateway import EmbeddingGateway

logger = logging.getLogger("rag.pipeline")


class PipelineState(str, Enum):
    VALIDATING = "validating"
    EMBEDDING = "embedding"
    RETRIEVING = "retrieving"
    CONTEXT_BUILDING = "context_building"
    GENERATING = "generating"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {PipelineState.COMPLETED, PipelineState.ERRORED, PipelineState.CANCELLED}
)


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...

    def generate_stream(self, prompt: str) -> AsyncIterator[str]: ...


StorageFactory = Callable[[], AsyncContextManager[Any]]


# ---------------------------------------------------------------------
# Results and events
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ChunkPreview:
    content: str
    similarity: float


@dataclass(frozen=True)
class AnswerPayload:
    answer: str
    chunks: List[ChunkPreview] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StreamEvent:
    """One event of an answer stream: ``token``, ``done`` or ``error``."""
    type: str
    data: Any

    @property
    def terminal(self) -> bool:
        return self.type in ("done", "error")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data}


@dataclass
class _Prepared:
    prompt: str
    chunks: List[RetrievedChunk]


class _Run:
    """State tracker for one question."""

    def __init__(self, chat_id: uuid.UUID, mode: str) -> None:
        self.chat_id = chat_id
        self.mode = mode
        self.state = PipelineState.VALIDATING
        self.started = time.perf_counter()

    def advance(self, state: PipelineState) -> None:
        logger.debug(
            "[%s %s] %s -> %s", self.mode, self.chat_id, self.state.value, state.value
        )
        self.state = state

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


_CLOSED = object()
_END = object()


class AnswerStream:
    """
    Finite, ordered, cancellable sequence of answer events.

    Consume with ``async for event in stream.events()``. Call ``cancel()``
    when the consumer goes away.
    """

    def __init__(self, chat_id: uuid.UUID) -> None:
        self._run = _Run(chat_id, "stream")
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._cancelled = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> PipelineState:
        return self._run.state

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop forwarding deltas. No-op once the stream has terminated."""
        if self._run.state in TERMINAL_STATES or self.cancelled:
            return
        logger.info("Stream for chat %s cancelled by consumer", self._run.chat_id)
        self._cancelled.set()

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def wait_closed(self) -> None:
        """Wait for the producer to finish, including persistence."""
        if self._task is not None:
            await self._task

    def _emit(self, event: StreamEvent) -> None:
        if not self.cancelled:
            self._queue.put_nowait(event)

    def _close(self) -> None:
        self._queue.put_nowait(_CLOSED)


async def _next_delta(deltas: AsyncIterator[str]) -> Any:
    try:
        return await deltas.__anext__()
    except StopAsyncIteration:
        return _END


# ---------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------

class AnswerPipeline:
    """
    Question answering over a chat's video transcripts.

    All collaborators are injected already constructed; the pipeline keeps
    no per-request state between calls.
    """

    def __init__(
        self,
        storage_factory: StorageFactory,
        embeddings: EmbeddingGateway,
        generator: TextGenerator,
        retrieval: RetrievalConfig,
        max_messages: int = 50,
        preview_length: int = 100,
    ) -> None:
        """
        Parameters
        ----------
        storage_factory : StorageFactory
            Returns an async context manager yielding a unit of work with
            ``chats``, ``transcripts`` and ``commit()``.
        embeddings : EmbeddingGateway
            Sanitizing embedding front.
        generator : TextGenerator
            Generation capability (batch and streaming).
        retrieval : RetrievalConfig
            Chunk bounds and similarity threshold.
        max_messages : int
            Size of the conversation history window.
        preview_length : int
            Characters of chunk content returned to the client.
        """
        if max_messages < 0:
            raise ValueError("max_messages must not be negative")
        self._storage_factory = storage_factory
        self._embeddings = embeddings
        self._generator = generator
        self._retrieval = retrieval
        self._max_messages = max_messages
        self._preview_length = preview_length
        self._locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ask(self, chat_id: uuid.UUID, question: str) -> AnswerPayload:
        """
        Answer ``question`` and persist the exchange.

        Raises
        ------
        ChatNotFound, EmbeddingFailure, RetrievalFailure, GenerationFailure
        """
        run = _Run(chat_id, "batch")
        logger.info(
            "Processing question for chat %s (length=%d)", chat_id, len(question)
        )

        try:
            async with self._lock_for(chat_id):
                prepared = await self._prepare(run, chat_id, question)

                run.advance(PipelineState.GENERATING)
                started = time.perf_counter()
                answer = await self._generate(prepared.prompt)
                logger.info(
                    "LLM response received in %.0fms",
                    (time.perf_counter() - started) * 1000,
                )

                run.advance(PipelineState.PERSISTING)
                await self._persist(chat_id, question, answer)
        except Exception as exc:
            self._fail(run, exc)
            raise

        run.advance(PipelineState.COMPLETED)
        logger.info(
            "Question processed in %.0fms (chat=%s, chunks=%d)",
            run.elapsed_ms,
            chat_id,
            len(prepared.chunks),
        )
        return self._payload(answer, prepared.chunks)

    def ask_stream(self, chat_id: uuid.UUID, question: str) -> AnswerStream:
        """
        Start answering ``question`` in streaming mode.

        Must be called from a running event loop. Errors of any state are
        delivered as a terminal ``error`` event, never raised.
        """
        stream = AnswerStream(chat_id)
        stream._task = asyncio.create_task(self._produce(stream, chat_id, question))
        return stream

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def chat_lock(self, chat_id: uuid.UUID) -> asyncio.Lock:
        """
        Lock serializing work on one chat. Hold it while deleting the chat so
        that an in-flight question finishes persisting first.
        """
        return self._lock_for(chat_id)

    def _lock_for(self, chat_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock

    async def _prepare(self, run: _Run, chat_id: uuid.UUID, question: str) -> _Prepared:
        async with self._storage_factory() as storage:
            run.advance(PipelineState.VALIDATING)
            chat = await storage.chats.find_by_id(chat_id)
            if chat is None:
                raise ChatNotFound(chat_id)

            run.advance(PipelineState.EMBEDDING)
            query_embedding = await self._embeddings.embed_query(question)

            run.advance(PipelineState.RETRIEVING)
            videos = await storage.chats.videos_for(chat_id)
            if videos:
                chunks = await retrieve(
                    storage.transcripts,
                    query_embedding,
                    [video.id for video in videos],
                    self._retrieval,
                )
            else:
                logger.warning("Chat %s has no videos left, answering without transcripts", chat_id)
                chunks = []

            run.advance(PipelineState.CONTEXT_BUILDING)
            history = await storage.chats.recent_messages(chat_id, self._max_messages)
            prompt = build_prompt(
                chunks,
                [video.title for video in videos],
                history,
                question,
            )

        logger.info(
            "Context ready for chat %s: chunks=%d, messages=%d",
            chat_id,
            len(chunks),
            len(history),
        )
        return _Prepared(prompt=prompt, chunks=chunks)

    async def _generate(self, prompt: str) -> str:
        try:
            return await self._generator.generate(prompt)
        except RagError:
            raise
        except Exception as exc:
            raise GenerationFailure(f"Answer generation failed: {exc}") from exc

    async def _persist(self, chat_id: uuid.UUID, question: str, answer: str) -> None:
        try:
            async with self._storage_factory() as storage:
                await storage.chats.append_message(chat_id, "user", question)
                await storage.chats.append_message(chat_id, "assistant", answer)
                await storage.chats.touch(chat_id)
                await storage.commit()
        except IntegrityError as exc:
            # Chat deleted by another process while the answer was generated
            raise ChatNotFound(chat_id) from exc

    def _payload(self, answer: str, chunks: List[RetrievedChunk]) -> AnswerPayload:
        return AnswerPayload(
            answer=answer,
            chunks=[
                ChunkPreview(
                    content=chunk.content[: self._preview_length] + "...",
                    similarity=chunk.similarity,
                )
                for chunk in chunks
            ],
        )

    def _fail(self, run: _Run, exc: Exception) -> None:
        run.advance(PipelineState.ERRORED)
        if isinstance(exc, RagError):
            logger.warning(
                "Question for chat %s failed after %.0fms: %s",
                run.chat_id,
                run.elapsed_ms,
                exc,
            )
        else:
            logger.exception(
                "Unexpected error answering question for chat %s", run.chat_id
            )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _produce(
        self,
        stream: AnswerStream,
        chat_id: uuid.UUID,
        question: str,
    ) -> None:
        run = stream._run
        logger.info(
            "Processing streaming question for chat %s (length=%d)",
            chat_id,
            len(question),
        )

        try:
            async with self._lock_for(chat_id):
                prepared = await self._prepare(run, chat_id, question)
                if stream.cancelled:
                    run.advance(PipelineState.CANCELLED)
                    return

                run.advance(PipelineState.GENERATING)
                answer = await self._consume(stream, prepared.prompt)
                if answer is None:
                    run.advance(PipelineState.CANCELLED)
                    logger.info(
                        "Stream for chat %s cancelled after %.0fms, nothing persisted",
                        chat_id,
                        run.elapsed_ms,
                    )
                    return

                # The generator finished: persist even if the consumer is gone.
                run.advance(PipelineState.PERSISTING)
                await self._persist(chat_id, question, answer)

            run.advance(PipelineState.COMPLETED)
            stream._emit(
                StreamEvent("done", self._payload(answer, prepared.chunks).to_dict())
            )
            logger.info(
                "Streaming completed in %.0fms (chat=%s, answer length=%d)",
                run.elapsed_ms,
                chat_id,
                len(answer),
            )
        except Exception as exc:
            self._fail(run, exc)
            message = str(exc) if isinstance(exc, RagError) else "Internal server error"
            stream._emit(StreamEvent("error", message))
        finally:
            stream._close()

    async def _consume(self, stream: AnswerStream, prompt: str) -> Optional[str]:
        """
        Forward deltas until the generator ends or the stream is cancelled.

        Returns the full answer, or None when cancelled first.
        """
        parts: List[str] = []
        deltas = self._generator.generate_stream(prompt)
        cancelled = asyncio.create_task(stream._cancelled.wait())

        try:
            while True:
                pending = asyncio.create_task(_next_delta(deltas))
                done, _ = await asyncio.wait(
                    {pending, cancelled},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if pending not in done:
                    pending.cancel()
                    await asyncio.gather(pending, return_exceptions=True)
                    return None

                try:
                    delta = pending.result()
                except RagError:
                    raise
                except Exception as exc:
                    raise GenerationFailure(f"Answer streaming failed: {exc}") from exc

                if delta is _END:
                    return "".join(parts)
                if stream.cancelled:
                    return None
                if delta:
                    parts.append(delta)
                    stream._emit(StreamEvent("token", delta))
        finally:
            cancelled.cancel()
            await asyncio.gather(cancelled, return_exceptions=True)
            aclose = getattr(deltas, "aclose", None)
            if aclose is not None:
                await aclose()
