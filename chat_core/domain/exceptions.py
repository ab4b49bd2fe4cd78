"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在会话边界统一捕获并转换成 store 上可见的 error 字段。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STREAM_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、endpoint 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等（尚未拿到响应）。"""


class TransportError(BusinessError):
    """生成服务返回非 2xx 状态时抛出。"""

    def __init__(self, status_code: int, message: Optional[str] = None, **extra):
        super().__init__(
            code="HTTP_ERROR",
            message=message or f"HTTP error! status: {status_code}",
            http_status=status_code,
            **extra,
        )
        self.status_code = status_code


class StreamReadError(BusinessError):
    """读取流式响应过程中出错（连接中断、解码失败等）。"""


class ReleaseError(BusinessError):
    """释放响应读取器失败，只记录日志，不向上抛出。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class GenerationCancelled(Exception):
    """用户主动取消生成。

    不继承 BusinessError：取消是预期结果，不应写入 error 字段。
    """

    def __init__(self, message: str = "Generation aborted"):
        super().__init__(message)
