"""会话/上下文引擎核心模块。

负责把用户消息写入当前会话、按模型预算裁剪上下文、经 Router 调用
Provider（一次性请求先查缓存）、把回答或流式片段写回会话，并在每轮
结束后交给外部存储持久化。

并发约定：
- 每次发送都在线程池里执行，调用方立即拿到句柄。
- 同一会话的发送在提交时领取轮次，按提交顺序逐个执行，保证会话只有
  一个写入者，且消息顺序与调用顺序一致。
- 每次 append/replace/快照都在引擎的变更锁内完成，读者总能看到完整列表。
- 引擎本身没有超时；Provider 永不返回时句柄会一直停留在等待状态。
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional, Set, Tuple
from uuid import uuid4

from chat_core.domain.conversation import Conversation, ConversationStore, ConversationSummary, derive_title
from chat_core.domain.exceptions import BusinessError, ContextTooLarge, ValidationError
from chat_core.domain.models import Message, new_message_id
from chat_core.engine.budget import ContextBudgeter
from chat_core.engine.cache import RequestCache
from chat_core.engine.handles import SendHandle, StreamHandle
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.router import ProviderRouter


@dataclass
class EngineConfig:
    temperature: float = 0.7  # 生成温度，取值 [0, 1]
    max_tokens: Optional[int] = None
    fail_on_empty_context: bool = False  # 为 True 时空上下文抛 ContextTooLarge
    title_max_words: int = 4
    worker_threads: int = 4

    def __post_init__(self) -> None:
        if not 0.0 <= self.temperature <= 1.0:
            raise ValueError("temperature must be within [0, 1]")


@dataclass
class TranscriptEvent:
    """会话变更通知。

    kind:
        - "append": 追加了一条消息。
        - "replace": 流式占位消息被同 id 的新值替换。
        - "title": 会话标题被首条用户消息设置。
        - "switch": 当前会话被切换（新建、加载或删除后重建）。
    """

    kind: Literal["append", "replace", "title", "switch"]
    conversation_id: str
    message: Optional[Message] = None
    title: Optional[str] = None


TranscriptListener = Callable[[TranscriptEvent], None]


class _SendTurns:
    """单个会话的 FIFO 发送轮次。

    take() 在提交时按调用顺序发号；worker 用 wait() 等到自己的号，
    done() 标记结束（排队中被取消的号也要 done），轮次按号依次推进。
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._next = 0
        self._serving = 0
        self._done: Set[int] = set()

    def take(self) -> int:
        with self._cond:
            ticket = self._next
            self._next += 1
            return ticket

    def wait(self, ticket: int) -> None:
        with self._cond:
            while self._serving != ticket:
                self._cond.wait()

    def done(self, ticket: int) -> None:
        with self._cond:
            self._done.add(ticket)
            while self._serving in self._done:
                self._done.remove(self._serving)
                self._serving += 1
            self._cond.notify_all()


class ConversationEngine:
    def __init__(
        self,
        store: ConversationStore,
        router: ProviderRouter,
        budgeter: Optional[ContextBudgeter] = None,
        cache: Optional[RequestCache] = None,
        config: Optional[EngineConfig] = None,
    ):
        self._store = store
        self._router = router
        self._config = config or EngineConfig()
        self._budgeter = budgeter or ContextBudgeter(router.registry)
        self._cache = cache if cache is not None else RequestCache()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.worker_threads,
            thread_name_prefix="chat-send",
        )
        self._mutation_lock = threading.RLock()
        # 以下三项都由 _mutation_lock 保护，会话没有发送在途时即被清理
        self._send_turns: Dict[str, _SendTurns] = {}
        # 有发送在途的会话对象，加载同 id 会话时复用它而不是读存储里的旧快照
        self._live: Dict[str, List[Any]] = {}
        # 已删除但仍有发送在途的会话，发送结束后不再写回存储
        self._deleted: Set[str] = set()
        self._listeners: List[TranscriptListener] = []
        self._current = Conversation.new()

    # ---- 读取 ----

    @property
    def current(self) -> Conversation:
        """当前会话对象（会被后台发送修改，渲染时请用 messages()）。"""

        with self._mutation_lock:
            return self._current

    def messages(self) -> List[Message]:
        with self._mutation_lock:
            return list(self._current.messages)

    def list_conversations(self) -> List[ConversationSummary]:
        return self._store.list()

    def subscribe(self, listener: TranscriptListener) -> Callable[[], None]:
        """注册会话变更监听器，返回取消注册的函数。

        监听器在执行发送的后台线程里被调用，需要自行切换到 UI 线程。
        """

        with self._mutation_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._mutation_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ---- 发送 ----

    def send_one_shot(self, text: str, model_id: str) -> SendHandle:
        """非阻塞地发送一条消息并等待完整回答。

        命中缓存时直接使用缓存的回答，不经过 Router。
        Provider 报错时会话里只保留已追加的用户消息。
        """

        self._validate_text(text)
        with self._mutation_lock:
            conv = self._current
            handle = SendHandle(conv.id, model_id)
            handle._attach(self._submit(conv, self._run_one_shot, text, model_id, handle))
        return handle

    def send_streaming(self, text: str, model_id: str) -> StreamHandle:
        """非阻塞地发送一条消息并以流式片段更新占位回答。

        流中途失败或被取消时，已累积的部分文本保留在会话中。
        流式请求从不读写缓存。
        """

        self._validate_text(text)
        with self._mutation_lock:
            conv = self._current
            handle = StreamHandle(conv.id, model_id, message_id=new_message_id())
            handle._attach(self._submit(conv, self._run_stream, text, model_id, handle))
        return handle

    def set_credential(self, provider_tag: str, secret: Optional[str]) -> None:
        self._router.set_credential(provider_tag, secret)

    # ---- 会话管理 ----

    def new_conversation(self) -> Conversation:
        """保存非空的当前会话，然后切换到一个新的空会话。"""

        self._persist_current()
        with self._mutation_lock:
            self._current = Conversation.new()
            fresh = self._current
        logger.info("Created new conversation", extra={"extra": {"conversation_id": fresh.id}})
        self._notify([TranscriptEvent(kind="switch", conversation_id=fresh.id)])
        return fresh

    def load_conversation(self, conversation_id: str) -> Conversation:
        with self._mutation_lock:
            if self._current.id == conversation_id:
                return self._current
        self._persist_current()
        with self._mutation_lock:
            live = self._live.get(conversation_id)
        loaded = live[0] if live else self._store.fetch(conversation_id)
        if loaded is None:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        with self._mutation_lock:
            self._current = loaded
        logger.info("Loaded conversation", extra={"extra": {"conversation_id": loaded.id}})
        self._notify([TranscriptEvent(kind="switch", conversation_id=loaded.id)])
        return loaded

    def delete_conversation(self, conversation_id: str) -> None:
        """删除会话；删除的是当前会话时切换到新的空会话。

        被删会话不会在切换前再次保存，正在进行的发送结束后也不会把它写回存储。
        """

        with self._mutation_lock:
            is_active = self._current.id == conversation_id
            if conversation_id in self._live:
                self._deleted.add(conversation_id)
        if not is_active:
            self._store.delete(conversation_id)
        else:
            # 当前会话可能从未保存过
            if self._store.fetch(conversation_id) is not None:
                self._store.delete(conversation_id)
            with self._mutation_lock:
                self._current = Conversation.new()
                fresh = self._current
            self._notify([TranscriptEvent(kind="switch", conversation_id=fresh.id)])
        logger.info("Deleted conversation", extra={"extra": {"conversation_id": conversation_id}})

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ConversationEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ---- 后台执行 ----

    def _run_one_shot(self, conv: Conversation, text: str, model_id: str, handle: SendHandle) -> Message:
        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conv.id,
            "model_id": model_id,
            "mode": "one_shot",
        }
        handle._set_state("awaiting_response")
        try:
            response = self._complete(conv, text, model_id, log_ctx)
        except Exception as e:
            handle._set_state("failed")
            self._log(logging.ERROR, "Send failed", log_ctx, error=str(e), code=getattr(e, "code", None))
            raise
        handle._set_state("completed")
        self._log(
            logging.INFO,
            "Completed send",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            assistant_message_id=response.id,
        )
        return response

    def _complete(self, conv: Conversation, text: str, model_id: str, log_ctx: Dict[str, Any]) -> Message:
        self._append_user(conv, text)
        context = self._prepare_context(conv, model_id, log_ctx)

        cached = self._cache.lookup(context, model_id)
        if cached is not None:
            self._log(logging.INFO, "Cache hit", log_ctx, message_count=len(context))
            self._append(conv, cached)
            self._persist(conv)
            return cached

        provider = self._router.route(model_id)
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=provider.name,
            message_count=len(context),
        )
        response = provider.complete(context, model_id, self._config.temperature, self._config.max_tokens)
        self._append(conv, response)
        self._cache.store(response, context, model_id)
        self._persist(conv)
        return response

    def _run_stream(self, conv: Conversation, text: str, model_id: str, handle: StreamHandle) -> Optional[Message]:
        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conv.id,
            "model_id": model_id,
            "mode": "stream",
            "assistant_message_id": handle.message_id,
        }
        try:
            # 等待轮次期间被取消
            if handle.cancel_requested:
                handle._set_state("cancelled")
                self._log(logging.INFO, "Stream cancelled before start", log_ctx)
                return None
            handle._set_state("awaiting_response")
            try:
                final, interrupted = self._stream(conv, text, model_id, handle, log_ctx)
            except Exception as e:
                handle._set_state("failed")
                self._log(logging.ERROR, "Stream failed", log_ctx, error=str(e), code=getattr(e, "code", None))
                raise
            if interrupted:
                handle._set_state("cancelled")
                self._log(logging.INFO, "Stream cancelled", log_ctx, chars=len(final.text))
                return final
            handle._set_state("completed")
        finally:
            handle._finish()
        self._log(
            logging.INFO,
            "Completed stream",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            chars=len(final.text),
        )
        return final

    def _stream(
        self,
        conv: Conversation,
        text: str,
        model_id: str,
        handle: StreamHandle,
        log_ctx: Dict[str, Any],
    ) -> Tuple[Message, bool]:
        self._append_user(conv, text)
        context = self._prepare_context(conv, model_id, log_ctx)
        placeholder = Message.create("", "assistant", message_id=handle.message_id)
        self._append(conv, placeholder)

        provider = self._router.route(model_id)
        self._log(
            logging.INFO,
            "Calling provider (stream)",
            log_ctx,
            provider=provider.name,
            message_count=len(context),
        )
        chunks = provider.stream(context, model_id, self._config.temperature, self._config.max_tokens)
        handle._set_state("streaming")

        current = placeholder
        accumulated = ""
        interrupted = False
        try:
            for chunk in chunks:
                if handle.cancel_requested:
                    interrupted = True
                    break
                if not chunk:
                    continue
                candidate = placeholder.with_text(accumulated + chunk)
                # 写入会话与投递在句柄内原子完成，取消之后到达的片段两者都不做
                if not handle._deliver(chunk, lambda m=candidate: self._replace(conv, m)):
                    interrupted = True
                    break
                accumulated += chunk
                current = candidate
                self._notify([TranscriptEvent(kind="replace", conversation_id=conv.id, message=current)])
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
        if not interrupted:
            self._persist(conv)
        return current, interrupted

    # ---- 会话变更 ----

    def _append_user(self, conv: Conversation, text: str) -> Message:
        message = Message.create(text, "user")
        events = [TranscriptEvent(kind="append", conversation_id=conv.id, message=message)]
        with self._mutation_lock:
            first = not conv.messages
            conv.append(message)
            # 标题只由首条用户消息生成一次
            if first:
                conv.title = derive_title(text, self._config.title_max_words)
                events.append(TranscriptEvent(kind="title", conversation_id=conv.id, title=conv.title))
        self._notify(events)
        return message

    def _append(self, conv: Conversation, message: Message) -> None:
        with self._mutation_lock:
            conv.append(message)
        self._notify([TranscriptEvent(kind="append", conversation_id=conv.id, message=message)])

    def _replace(self, conv: Conversation, message: Message) -> None:
        with self._mutation_lock:
            conv.replace(message)

    def _prepare_context(self, conv: Conversation, model_id: str, log_ctx: Dict[str, Any]) -> List[Message]:
        with self._mutation_lock:
            transcript = list(conv.messages)
        context = self._budgeter.prepare(transcript, model_id)
        if not context:
            if self._config.fail_on_empty_context:
                raise ContextTooLarge(
                    code="CONTEXT_TOO_LARGE",
                    message="Latest message alone exceeds the model's context budget",
                    model_id=model_id,
                )
            self._log(logging.WARNING, "Empty context after pruning", log_ctx, transcript_size=len(transcript))
        return context

    def _persist(self, conv: Conversation) -> None:
        with self._mutation_lock:
            if conv.id in self._deleted:
                return
            snapshot = conv.snapshot()
        self._store.persist(snapshot)

    def _persist_current(self) -> None:
        with self._mutation_lock:
            conv = self._current
            empty = not conv.messages
        if not empty:
            self._persist(conv)

    def _notify(self, events: List[TranscriptEvent]) -> None:
        with self._mutation_lock:
            listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(
                        "Transcript listener failed",
                        extra={"extra": {"conversation_id": event.conversation_id, "kind": event.kind}},
                    )

    # ---- 同步辅助 ----

    def _submit(self, conv: Conversation, fn: Callable[..., Optional[Message]], *args: Any) -> Future:
        # 领号与提交在同一把锁内完成，线程池队列顺序与轮次顺序一致，不会有 worker 等待排在它后面的号
        with self._mutation_lock:
            entry = self._live.setdefault(conv.id, [conv, 0])
            entry[1] += 1
            turns = self._send_turns.setdefault(conv.id, _SendTurns())
            ticket = turns.take()
            future = self._executor.submit(self._run_in_turn, turns, ticket, fn, conv, *args)
        # 排队中被取消的发送不会执行 fn，因此在回调里统一收尾
        future.add_done_callback(lambda _f: self._finish_send(conv, turns, ticket))
        return future

    @staticmethod
    def _run_in_turn(
        turns: _SendTurns,
        ticket: int,
        fn: Callable[..., Optional[Message]],
        conv: Conversation,
        *args: Any,
    ) -> Optional[Message]:
        turns.wait(ticket)
        return fn(conv, *args)

    def _finish_send(self, conv: Conversation, turns: _SendTurns, ticket: int) -> None:
        turns.done(ticket)
        with self._mutation_lock:
            entry = self._live.get(conv.id)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] > 0:
                return
            del self._live[conv.id]
            self._deleted.discard(conv.id)
            if self._send_turns.get(conv.id) is turns:
                del self._send_turns[conv.id]

    @staticmethod
    def _validate_text(text: str) -> None:
        if not text or not text.strip():
            raise ValidationError(code="EMPTY_MESSAGE", message="Message text must not be empty")

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
