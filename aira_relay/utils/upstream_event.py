# coding: utf-8
import json
from typing import Literal, Optional

from pydantic import BaseModel, Field


DATA_PREFIX = "data: "
DONE_TOKEN = "[DONE]"


# ===== 上游 SSE 单行解码结果 =====
class UpstreamEvent(BaseModel):
    type: Literal["content", "done", "skip"] = Field(description="事件类型: content|done|skip")
    content: str = Field(default="", description="增量文本")


def parse_sse_line(line: str) -> UpstreamEvent:
    """
    解码一行 SSE 文本（不含换行符）。

    空行、注释行（以 ':' 开头）和非 data 行返回 skip；``[DONE]`` 返回 done；
    其余按 JSON 解析并取 ``choices[0].delta.content``。
    JSON 解析失败时抛出 ``json.JSONDecodeError``，由调用方决定是否视为不完整的行。
    """
    if line.endswith("\r"):
        line = line[:-1]
    if line.startswith(":") or line.strip() == "":
        return UpstreamEvent(type="skip")
    if not line.startswith(DATA_PREFIX):
        return UpstreamEvent(type="skip")

    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_TOKEN:
        return UpstreamEvent(type="done")

    parsed = json.loads(payload)
    content = _delta_content(parsed)
    if content:
        return UpstreamEvent(type="content", content=content)
    return UpstreamEvent(type="skip")


def _delta_content(parsed) -> Optional[str]:
    if not isinstance(parsed, dict):
        return None
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None
