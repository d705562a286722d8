"""ConversationEngine 返回给调用方的发送句柄。

每次发送都在后台线程执行，调用方通过句柄观察状态、等待结果；
流式句柄还可以按顺序迭代文本片段并随时取消。

状态流转：
    idle -> awaiting_response -> streaming -> completed | failed | cancelled
    idle -> awaiting_response -> completed | failed
"""

import queue
import threading
from concurrent.futures import CancelledError, Future
from typing import Callable, Iterator, Literal, Optional

from chat_core.domain.models import Message


SendState = Literal["idle", "awaiting_response", "streaming", "completed", "failed", "cancelled"]

_END = object()


class SendHandle:
    """一次 send_one_shot / send_streaming 调用的可观察结果。"""

    def __init__(self, conversation_id: str, model_id: str):
        self.conversation_id = conversation_id
        self.model_id = model_id
        self._state: SendState = "idle"
        self._future: Optional[Future] = None

    @property
    def state(self) -> SendState:
        return self._state

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def result(self, timeout: Optional[float] = None) -> Optional[Message]:
        """等待并返回 assistant 消息；发送失败时抛出对应的业务异常。

        尚未开始就被取消的流式发送返回 None。
        """

        try:
            return self._require_future().result(timeout)
        except CancelledError:
            return None

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        try:
            return self._require_future().exception(timeout)
        except CancelledError:
            return None

    def add_done_callback(self, fn: Callable[["SendHandle"], None]) -> None:
        self._require_future().add_done_callback(lambda _f: fn(self))

    def _attach(self, future: Future) -> None:
        self._future = future

    def _set_state(self, state: SendState) -> None:
        # cancelled 是终态，后台线程稍后的状态更新不再覆盖它
        if self._state != "cancelled":
            self._state = state

    def _require_future(self) -> Future:
        if self._future is None:
            raise RuntimeError("Handle is not attached to a running send")
        return self._future


class StreamHandle(SendHandle):
    """流式发送句柄。

    - message_id: 占位 assistant 消息的 id，在任何片段到达前就已确定，
      UI 可以提前用它锚定滚动位置。
    - 迭代句柄会按发出顺序得到每个已写入会话的片段；流以错误结束时，
      迭代在最后抛出该错误。句柄只支持一个迭代者。
    - cancel(): 立即结束迭代并进入 cancelled 状态，之后到达的片段既不写入
      会话也不投递；已写入的部分文本保留。
    """

    def __init__(self, conversation_id: str, model_id: str, message_id: str):
        super().__init__(conversation_id, model_id)
        self.message_id = message_id
        self._cancel_event = threading.Event()
        self._chunks: "queue.Queue[object]" = queue.Queue()
        self._delivery_lock = threading.Lock()
        self._finished = False

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()
        # 还在排队、尚未开始执行的发送直接撤销
        if self._future is not None and self._future.cancel():
            self._set_state("cancelled")
            self._finish()
            return
        with self._delivery_lock:
            if self._finished:
                return
            # Provider 可能迟迟不给下一个片段，不等它
            self._set_state("cancelled")
            self._finished = True
            self._chunks.put(_END)

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self._chunks.get()
            if item is _END:
                break
            yield item  # type: ignore[misc]
        if self.state != "cancelled":
            self.result()

    def _deliver(self, chunk: str, apply: Callable[[], None]) -> bool:
        """未取消时先执行 apply（写入会话）再投递片段，已取消返回 False。"""

        with self._delivery_lock:
            if self._finished or self._cancel_event.is_set():
                return False
            apply()
            self._chunks.put(chunk)
            return True

    def _finish(self) -> None:
        with self._delivery_lock:
            if self._finished:
                return
            self._finished = True
            self._chunks.put(_END)
