"""Chat Core 顶层包。

该包提供多会话聊天客户端的核心实现，
包括配置加载、领域模型、SSE 流解码、生成会话与取消、
会话集合管理以及基于 httpx 的传输层。
"""

from chat_core.api.service import create_store, snapshot
from chat_core.store.conversation_store import ConversationStore

__all__ = ["ConversationStore", "create_store", "snapshot"]
