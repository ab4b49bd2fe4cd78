"""对外 API 服务模块。

提供组装 ConversationStore 的工厂函数，以及把 store 状态序列化为
展示层可直接使用的字典的辅助函数。
"""

from typing import Any, Dict, Optional

from chat_core.config.settings import settings as default_settings
from chat_core.domain.conversation import Conversation
from chat_core.domain.models import Message
from chat_core.store.conversation_store import ConversationStore
from chat_core.transport import Transport, create_transport


def create_store(settings=None, transport: Optional[Transport] = None) -> ConversationStore:
    """创建一个新的 ConversationStore。

    Args:
        settings: 配置对象（可选，默认使用全局配置）
        transport: 传输层实现（可选，默认 HttpxTransport）

    Returns:
        已包含一个默认会话的 ConversationStore

    Raises:
        ValidationError: 配置中的 api_url 为空
    """
    cfg = settings or default_settings
    return ConversationStore(
        transport=transport or create_transport(cfg),
        endpoint=cfg.api_url,
        name_prefix=cfg.default_conversation_name,
        error_prefix=cfg.error_prefix,
    )


def snapshot(store: ConversationStore) -> Dict[str, Any]:
    """导出 store 的可见状态。

    Returns:
        包含 conversations, current_conversation_id, current_messages,
        is_loading, is_generating, error 的字典
    """
    return {
        "conversations": [_conversation_to_dict(c) for c in store.conversations],
        "current_conversation_id": store.current_conversation_id,
        "current_messages": [_message_to_dict(m) for m in store.current_messages],
        "is_loading": store.state.is_loading,
        "is_generating": store.state.is_generating,
        "error": store.state.error,
    }


def _conversation_to_dict(conv: Conversation) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "name": conv.name,
        "created_at": conv.created_at.isoformat(),
        "messages": [_message_to_dict(m) for m in conv.messages],
    }


def _message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "role": message.role,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
    }
