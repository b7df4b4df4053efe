# coding: utf-8
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ===== 多模态内容块 =====
class ImageURL(BaseModel):
    url: str = Field(description="图片地址或 data URL")


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str = Field(description="文本内容")


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


# ===== 对话消息 =====
class ChatMessage(BaseModel):
    # 客户端附带的其他字段原样转发给上游
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant"]
    content: Union[str, List[ContentPart]]

    @field_validator("content")
    @classmethod
    def _parts_not_empty(cls, value):
        if isinstance(value, list) and not value:
            raise ValueError("content 为数组时至少需要一个内容块")
        return value

    @property
    def text(self) -> str:
        """纯文本内容：字符串直接返回，数组取第一个文本块"""
        if isinstance(self.content, str):
            return self.content
        for part in self.content:
            if isinstance(part, TextPart):
                return part.text
        return ""

    @property
    def has_image(self) -> bool:
        return isinstance(self.content, list) and any(isinstance(part, ImagePart) for part in self.content)

    def to_openai(self) -> dict:
        return self.model_dump(exclude_none=True)


def latest_user_query(messages: List[ChatMessage]) -> str:
    """最近一条 user 消息的纯文本，没有则返回空字符串"""
    for message in reversed(messages):
        if message.role == "user":
            return message.text
    return ""


def has_images(messages: List[ChatMessage]) -> bool:
    return any(message.has_image for message in messages)
