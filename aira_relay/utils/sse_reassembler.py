# coding: utf-8
import codecs
import json
from typing import AsyncIterable, Callable, List, Optional

from aira_relay.utils.upstream_event import parse_sse_line


class SSEReassembler:
    """
    中继 SSE 字节流的消费端：增量解码 UTF-8，按行拆分，累积 ``delta.content``。

    跨网络分片的半行保存在缓冲区里，只有拿到完整的换行结尾的行才解析；
    JSON 解析失败的行放回缓冲区等待更多数据，只有 ``finish()`` 的最终冲刷才忽略解析失败。
    """

    def __init__(self, on_update: Optional[Callable[[str], None]] = None):
        self.on_update = on_update
        self.content = ""
        self.done = False
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes) -> List[str]:
        """喂入一段网络字节，返回本次解析出的增量片段"""
        if self.done:
            return []

        self._buffer += self._decoder.decode(chunk)
        fragments = []

        while True:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                break
            line = self._buffer[:newline_index]
            self._buffer = self._buffer[newline_index + 1:]

            try:
                event = parse_sse_line(line)
            except json.JSONDecodeError:
                # 视为不完整的行，等下一个分片
                self._buffer = line + "\n" + self._buffer
                break

            if event.type == "done":
                self.done = True
                break
            if event.type == "content":
                self._append(event.content)
                fragments.append(event.content)

        return fragments

    def finish(self) -> List[str]:
        """流结束时的最终冲刷，解析失败的残留直接忽略"""
        self._buffer += self._decoder.decode(b"", final=True)
        fragments = []

        if self._buffer.strip():
            for raw in self._buffer.split("\n"):
                if not raw:
                    continue
                try:
                    event = parse_sse_line(raw)
                except json.JSONDecodeError:
                    continue
                if event.type == "content":
                    self._append(event.content)
                    fragments.append(event.content)

        self._buffer = ""
        return fragments

    def _append(self, fragment: str):
        self.content += fragment
        if self.on_update is not None:
            self.on_update(self.content)


async def reassemble(
        byte_stream: AsyncIterable[bytes],
        on_update: Optional[Callable[[str], None]] = None
) -> str:
    """读取完整字节流并返回拼接后的回复文本，读到 [DONE] 即停止读取"""
    reassembler = SSEReassembler(on_update=on_update)
    async for chunk in byte_stream:
        reassembler.feed(chunk)
        if reassembler.done:
            break
    reassembler.finish()
    return reassembler.content
