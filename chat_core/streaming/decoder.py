"""SSE 风格流的解码器。

生成服务按行推送：

    data: <片段>\\n
    data: [DONE]\\n

本模块把传输层送来的原始块（bytes 或 str）转换成事件序列：

- Fragment: 一段需要原样追加到助手消息的文本。
- Terminal: 收到 "[DONE]"，本次回答结束。

不以 "data: " 开头的行、以及去掉前缀后为空的行会被静默忽略。
片段内容不做 JSON / 转义解析，按到达顺序原样拼接。
"""

import codecs
from dataclasses import dataclass
from typing import Iterator, List, Optional, Union

from chat_core.infrastructure.logging.logger import logger


DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

Chunk = Union[str, bytes]


@dataclass(frozen=True)
class Fragment:
    text: str


@dataclass(frozen=True)
class Terminal:
    pass


StreamEvent = Union[Fragment, Terminal]


def parse_line(line: str) -> Optional[StreamEvent]:
    """解析单行，无法识别时返回 None。"""

    if not line.startswith(DATA_PREFIX):
        if line.strip():
            logger.debug("Ignored non-data line", extra={"extra": {"line": line[:200]}})
        return None
    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return Terminal()
    if payload:
        return Fragment(payload)
    return None


def decode_chunk(chunk: str) -> Iterator[StreamEvent]:
    """无状态地解码单个文本块。

    跨块被截断的行会被当作完整行处理；需要跨块缓冲时使用 StreamDecoder。
    """

    for line in chunk.split("\n"):
        event = parse_line(line)
        if event is not None:
            yield event


class StreamDecoder:
    """带行缓冲的增量解码器。

    未以换行结尾的尾部会保留到下一个块再解析，流结束时调用 flush()
    处理残留内容。bytes 块使用增量 UTF-8 解码，多字节字符被拆开也不会乱码。
    """

    def __init__(self, encoding: str = "utf-8"):
        self._buffer = ""
        self._bytes_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def feed(self, chunk: Chunk) -> Iterator[StreamEvent]:
        text = self._to_text(chunk, final=False)
        if not text:
            return
        data = self._buffer + text
        lines: List[str] = data.split("\n")
        self._buffer = lines.pop()
        for line in lines:
            event = parse_line(line)
            if event is not None:
                yield event

    def flush(self) -> Iterator[StreamEvent]:
        rest = self._buffer + self._bytes_decoder.decode(b"", final=True)
        self._buffer = ""
        if rest:
            yield from decode_chunk(rest)

    def _to_text(self, chunk: Chunk, final: bool) -> str:
        if isinstance(chunk, bytes):
            return self._bytes_decoder.decode(chunk, final=final)
        return chunk
