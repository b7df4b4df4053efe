# chat_relay_client.py
import json
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Any

from aira_relay.llm_api.chat_message import ChatMessage, ImagePart, ImageURL, TextPart
from aira_relay.utils.http_factory import GlobalHTTPFactory
from aira_relay.utils.log_util import logger_pool
from aira_relay.utils.sse_reassembler import reassemble


TITLE_MAX_LENGTH = 30
IMAGE_ONLY_TITLE = "Image question"


class ChatRelayError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ChatRelayClient:
    """对话中继服务的调用端：发送对话历史并把 SSE 流重组为完整回复"""

    def __init__(self, url: str, api_key: Optional[str] = None, logger_name: str = "chat_client"):
        self.url = url
        self.api_key = api_key
        self.logger = logger_pool.get_logger(logger_name)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream_reply(
            self,
            messages: List[Dict[str, Any]],
            web_search: bool = False,
            on_update: Optional[Callable[[str], None]] = None,
    ) -> str:
        """
        发送请求并逐片段回调 ``on_update(累计内容)``，返回最终回复文本。

        Raises:
            ChatRelayError: 中继返回非 2xx
        """
        http_client = await GlobalHTTPFactory.get_async_http_client()
        body = {"messages": messages, "webSearch": web_search}

        async with http_client.stream("POST", self.url, json=body, headers=self._headers()) as response:
            if not response.is_success:
                raw = await response.aread()
                try:
                    message = json.loads(raw).get("error")
                except (ValueError, AttributeError):
                    message = None
                raise ChatRelayError(response.status_code, message or f"Request failed with status {response.status_code}")

            return await reassemble(response.aiter_bytes(), on_update=on_update)


@dataclass
class ConversationMessage:
    role: str
    content: str
    images: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    web_search: bool = False

    def to_api(self) -> Dict[str, Any]:
        """有图片时转换为多模态内容块，否则为纯文本"""
        if not self.images:
            return ChatMessage(role=self.role, content=self.content).to_openai()

        parts = []
        if self.content:
            parts.append(TextPart(text=self.content))
        parts.extend(ImagePart(image_url=ImageURL(url=url)) for url in self.images)
        return ChatMessage(role=self.role, content=parts).to_openai()


def derive_title(text: str) -> str:
    text = text.strip()
    title = text[:TITLE_MAX_LENGTH] or IMAGE_ONLY_TITLE
    if len(text) > TITLE_MAX_LENGTH:
        title += "..."
    return title


class Conversation:
    """单个会话：乐观追加用户消息，流式更新助手消息，失败时回滚用户消息"""

    def __init__(self, client: ChatRelayClient, title: str = "New Chat"):
        self.client = client
        self.title = title
        self.messages: List[ConversationMessage] = []
        self.is_loading = False

    async def send(
            self,
            text: str,
            images: Optional[List[str]] = None,
            web_search: bool = False,
            on_update: Optional[Callable[[ConversationMessage], None]] = None,
    ) -> Optional[ConversationMessage]:
        """发送一条消息，返回助手消息；空消息或正在发送时返回 None"""
        images = images or []
        if (not text.strip() and not images) or self.is_loading:
            return None

        user_message = ConversationMessage(role="user", content=text.strip(), images=images, web_search=web_search)
        if not self.messages:
            self.title = derive_title(text)
        self.messages.append(user_message)

        assistant_message: Optional[ConversationMessage] = None

        def apply_update(content: str):
            nonlocal assistant_message
            # 第一个片段到达时才创建助手消息
            if assistant_message is None:
                assistant_message = ConversationMessage(role="assistant", content=content)
                self.messages.append(assistant_message)
            else:
                assistant_message.content = content
            if on_update is not None:
                on_update(assistant_message)

        self.is_loading = True
        try:
            await self.client.stream_reply(
                [m.to_api() for m in self.messages],
                web_search=web_search,
                on_update=apply_update,
            )
        except Exception as e:
            self.client.logger.error(f"Chat error: {e}")
            self.messages = [m for m in self.messages if m.id != user_message.id]
            raise
        finally:
            self.is_loading = False

        return assistant_message
