"""统一的消息与生成请求数据模型。

本模块定义了会话管理核心内部共享的标准数据结构：

- Message: 一条对话消息（user/assistant）。
- GenerationRequest: 发给生成服务的请求体。
- GenerationState: store 级别的瞬时生成状态（加载中、生成中、错误、取消句柄）。
- ServerMetrics: 生成服务 /metrics 接口返回的指标。

Transport 实现只依赖这些模型，负责在 HTTP 报文与模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Any, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from chat_core.session.cancellation import CancellationHandle


# 消息角色：前端只区分用户与助手两种
Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    """一条对话消息。

    - role: 消息角色。
    - content: 纯文本内容；助手消息在生成过程中被逐段追加。
    - timestamp: 创建时间（UTC）。
    """

    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class GenerationRequest:
    """一次流式生成请求。"""

    prompt: str
    stream: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {"prompt": self.prompt, "stream": self.stream}


@dataclass
class GenerationState:
    """store 级别的瞬时状态，只由 ConversationStore 持有和修改。

    同一时刻最多只有一个非空的 cancellation。
    """

    is_loading: bool = False
    is_generating: bool = False
    error: Optional[str] = None
    cancellation: Optional["CancellationHandle"] = None

    def clear_transient(self) -> None:
        """清空错误与加载标记（切换/新建会话时调用）。"""

        self.error = None
        self.is_loading = False


@dataclass
class ServerMetrics:
    """生成服务运行指标。"""

    uptime_seconds: float = 0.0
    tokens_per_second: float = 0.0
    avg_prompt_latency_ms: float = 0.0
    avg_generation_latency_ms: float = 0.0
    busy_slots_ratio: float = 0.0
    total_requests: int = 0
    failed_requests: int = 0
    success_rate: float = 0.0
    kv_cache_tokens: int = 0
    kv_cache_used_cells: int = 0
    total_prompt_tokens: int = 0
    total_generated_tokens: int = 0
    total_decode_calls: int = 0
    raw: Optional[dict] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ServerMetrics":
        """从 /metrics 的 JSON 构造，缺失字段取 0。"""

        return cls(
            uptime_seconds=float(data.get("uptime_seconds", 0)),
            tokens_per_second=float(data.get("tokens_per_second", 0)),
            avg_prompt_latency_ms=float(data.get("avg_prompt_latency_ms", 0)),
            avg_generation_latency_ms=float(data.get("avg_generation_latency_ms", 0)),
            busy_slots_ratio=float(data.get("busy_slots_ratio", 0)),
            total_requests=int(data.get("total_requests", 0)),
            failed_requests=int(data.get("failed_requests", 0)),
            success_rate=float(data.get("success_rate", 0)),
            kv_cache_tokens=int(data.get("kv_cache_tokens", 0)),
            kv_cache_used_cells=int(data.get("kv_cache_used_cells", 0)),
            total_prompt_tokens=int(data.get("total_prompt_tokens", 0)),
            total_generated_tokens=int(data.get("total_generated_tokens", 0)),
            total_decode_calls=int(data.get("total_decode_calls", 0)),
            raw=data,
        )
