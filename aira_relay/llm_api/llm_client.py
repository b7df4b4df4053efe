# llm_client.py
import os
from typing import Optional, Dict, Any, List, Sequence

import httpx
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

from aira_relay.utils.http_factory import GlobalHTTPFactory


class LLMClient:
    """OpenAI 兼容接口的 LLM 客户端：解析式调用走 openai SDK，透传流式调用走共享 httpx 客户端"""

    def __init__(
            self,
            model: str,
            base_url: str,
            api_key: Optional[str] = None,
            api_key_env_vars: Sequence[str] = (),
            temperature: Optional[float] = None,
            max_tokens: Optional[int] = None,
            top_p: Optional[float] = None,
            timeout: float = 60.0,
            max_retries: int = 0,
    ):
        self.model = model
        self.base_url = base_url
        self.api_key = api_key
        self.api_key_env_vars = tuple(api_key_env_vars)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.top_p = top_p
        self.timeout = timeout
        self.max_retries = max_retries

    def _resolve_api_key(self) -> Optional[str]:
        """解析API密钥：显式配置优先，其次环境变量"""
        if self.api_key:
            return self.api_key

        for env_var in self.api_key_env_vars:
            env_key = os.getenv(env_var)
            if env_key:
                return env_key
        return None

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.strip().rstrip('/')}/chat/completions"

    async def _get_async_client(self) -> AsyncOpenAI:
        """初始化异步客户端"""
        resolved_api_key = self._resolve_api_key()
        if not resolved_api_key:
            raise ValueError("API密钥未配置")

        shared_http = await GlobalHTTPFactory.get_async_http_client()

        client_config = {
            "base_url": self.base_url.strip(),
            "api_key": resolved_api_key,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
        }
        return AsyncOpenAI(**client_config, http_client=shared_http)

    def _build_call_params(self, messages: List[ChatCompletionMessageParam], **kwargs) -> Dict[str, Any]:
        """构建调用参数"""
        call_params = {
            "model": kwargs.get("model", self.model),
            "messages": messages,
            "temperature": kwargs.get("temperature", self.temperature),
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
            "top_p": kwargs.get("top_p", self.top_p),
        }

        # 服务商私有参数（如 search_recency_filter）
        extra_body = kwargs.get("extra_body")
        if extra_body:
            call_params["extra_body"] = extra_body

        # 移除None值
        return {k: v for k, v in call_params.items() if v is not None}

    async def acall(
            self,
            messages: List[ChatCompletionMessageParam],
            **kwargs
    ) -> Any:
        """异步调用（非流式）"""
        async_client = await self._get_async_client()
        call_params = self._build_call_params(messages, **kwargs)
        return await async_client.chat.completions.create(**call_params)

    async def open_raw_stream(
            self,
            messages: List[Dict[str, Any]],
            **kwargs
    ) -> httpx.Response:
        """
        发起 ``stream: true`` 请求并返回尚未读取的上游响应。

        响应体保持上游原始的 SSE 字节，不做任何重新分帧；调用方负责 ``aclose()``。
        """
        resolved_api_key = self._resolve_api_key()
        if not resolved_api_key:
            raise ValueError("API密钥未配置")

        body = self._build_call_params(messages, **kwargs)
        body.pop("extra_body", None)
        body["stream"] = True

        shared_http = await GlobalHTTPFactory.get_async_http_client()
        request = shared_http.build_request(
            "POST",
            self.completions_url,
            json=body,
            headers={
                "Authorization": f"Bearer {resolved_api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self.timeout, connect=5.0),
        )
        return await shared_http.send(request, stream=True)

    def is_configured(self) -> bool:
        """检查客户端是否已配置"""
        return self._resolve_api_key() is not None
