"""生成服务传输层。

该包下的模块负责：
- 定义 Transport / StreamResponse 抽象协议 (base)。
- 提供基于 httpx 的具体实现 (http_client)。
"""

from typing import Optional

import httpx

from chat_core.config.settings import settings
from chat_core.transport.base import StreamResponse, Transport
from chat_core.transport.http_client import HttpxTransport


def create_transport(cfg=None, client: Optional[httpx.AsyncClient] = None) -> Transport:
    """创建默认 Transport，未传入配置时使用全局配置。"""

    return HttpxTransport(cfg or settings, client=client)


__all__ = ["StreamResponse", "Transport", "HttpxTransport", "create_transport"]
