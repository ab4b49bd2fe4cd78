"""会话集合（聚合根）。

ConversationStore 持有全部会话、当前会话指针以及 GenerationState，
并对外提供新建、切换、删除、重命名、发送与停止六个操作。

不变量：
- 会话列表永不为空，且恰好有一个会话是当前会话。
- 同一时刻最多一个生成会话持有取消句柄；发送新消息时会先取消旧的生成。
"""

import logging
from itertools import count
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from chat_core.domain.conversation import Conversation
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import GenerationState, Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.session.generation import DEFAULT_ERROR_PREFIX, GenerationSession, stop_generation
from chat_core.transport.base import Transport


# 监听器事件：会话集合变化 / 生成状态变化 / 新片段写入
EVENT_CONVERSATIONS = "conversations"
EVENT_STATE = "state"
EVENT_FRAGMENT = "fragment"

Listener = Callable[[str, "ConversationStore"], None]


class ConversationStore:
    def __init__(
        self,
        transport: Transport,
        endpoint: str,
        name_prefix: str = "对话",
        error_prefix: str = DEFAULT_ERROR_PREFIX,
    ):
        endpoint = (endpoint or "").strip()
        if not endpoint:
            raise ValidationError(code="INVALID_ENDPOINT", message="Generation endpoint is empty")
        self._transport = transport
        self._endpoint = endpoint
        self._name_prefix = name_prefix
        self._error_prefix = error_prefix
        self._ids = count(1)
        self._conversation_count = 0
        self._conversations: List[Conversation] = []
        self._current_id: Optional[str] = None
        self._session: Optional[GenerationSession] = None
        self._listeners: List[Listener] = []
        self.state = GenerationState()
        self.create_new_conversation()

    # ---- 只读视图 ----

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations)

    @property
    def current_conversation_id(self) -> Optional[str]:
        return self._current_id

    @property
    def current_conversation(self) -> Optional[Conversation]:
        return self.get_conversation(self._current_id)

    @property
    def current_messages(self) -> List[Message]:
        conv = self.current_conversation
        return list(conv.messages) if conv else []

    def get_conversation(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        return None

    # ---- 会话管理 ----

    def create_new_conversation(self) -> Conversation:
        """新建会话并放到列表最前面，设为当前会话。"""

        self._conversation_count += 1
        conv = Conversation(
            id=f"conv-{next(self._ids)}-{uuid4().hex[:8]}",
            name=f"{self._name_prefix} {self._conversation_count}",
        )
        self._conversations.insert(0, conv)
        self._current_id = conv.id
        self.state.clear_transient()
        logger.info("Created conversation", extra={"extra": {"conversation_id": conv.id}})
        self._emit(EVENT_CONVERSATIONS)
        return conv

    def switch_conversation(self, conversation_id: str) -> bool:
        """切换当前会话。

        id 不存在时不做任何修改并返回 False。正在进行的生成不会被取消，
        它会继续写入自己所属会话的助手消息。
        """

        if self.get_conversation(conversation_id) is None:
            logger.warning(
                "Switch to unknown conversation ignored",
                extra={"extra": {"conversation_id": conversation_id}},
            )
            return False
        self._current_id = conversation_id
        self.state.clear_transient()
        self._emit(EVENT_CONVERSATIONS)
        return True

    def delete_conversation(self, conversation_id: str) -> bool:
        """删除会话；删光时自动新建一个。id 不存在时返回 False。"""

        conv = self.get_conversation(conversation_id)
        if conv is None:
            return False
        if self._session is not None and self._session.conversation_id == conversation_id:
            self.stop_generating()
        self._conversations = [c for c in self._conversations if c.id != conversation_id]
        logger.info("Deleted conversation", extra={"extra": {"conversation_id": conversation_id}})
        if conversation_id == self._current_id:
            if self._conversations:
                self._current_id = self._conversations[0].id
            else:
                self.create_new_conversation()
                return True
        self._emit(EVENT_CONVERSATIONS)
        return True

    def update_conversation_name(self, conversation_id: str, new_name: str) -> bool:
        conv = self.get_conversation(conversation_id)
        name = (new_name or "").strip()
        if conv is None or not name:
            return False
        conv.name = name
        self._emit(EVENT_CONVERSATIONS)
        return True

    # ---- 生成 ----

    async def send_message(self, content: str) -> None:
        """发送一条消息并等待流式回复结束。

        从不抛出业务异常，结果体现在 state 与消息内容上。
        已有生成进行中时，先取消它再开始新的生成。
        """

        conv = self.current_conversation
        if conv is None:
            return
        if self.state.cancellation is not None:
            logger.info("Previous generation superseded", extra={"extra": {"conversation_id": conv.id}})
            self.stop_generating()
        session = GenerationSession(
            state=self.state,
            transport=self._transport,
            endpoint=self._endpoint,
            on_fragment=self._apply_fragment,
            on_state=lambda: self._emit(EVENT_STATE),
            error_prefix=self._error_prefix,
        )
        self._session = session
        try:
            await session.start(conv, content)
        finally:
            if self._session is session:
                self._session = None

    def stop_generating(self) -> None:
        if stop_generation(self.state):
            self._emit(EVENT_STATE)

    def _apply_fragment(self, message: Message, text: str) -> None:
        message.content += text
        self._emit(EVENT_FRAGMENT)

    # ---- 监听 ----

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """注册状态监听器，返回取消注册的函数。"""

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self)
            except Exception as e:
                logger.log(
                    logging.ERROR,
                    "Listener failed",
                    extra={"extra": {"event": event, "error": str(e)}},
                )

    def __repr__(self) -> str:
        info: Dict[str, Any] = {
            "conversations": len(self._conversations),
            "current": self._current_id,
            "is_generating": self.state.is_generating,
        }
        return f"ConversationStore({info})"
