import asyncio
import os
import httpx
from typing import Optional


class GlobalHTTPFactory:
    _async_client: Optional[httpx.AsyncClient] = None
    _lock = asyncio.Lock()

    @classmethod
    async def get_async_http_client(cls) -> httpx.AsyncClient:
        """获取全局共享的 HTTP 客户端 (搜索和对话两条上游链路复用同一个连接池)"""
        if cls._async_client is None:
            async with cls._lock:
                if cls._async_client is None:
                    cls._async_client = httpx.AsyncClient(
                        limits=httpx.Limits(
                            max_keepalive_connections=10,
                            max_connections=50,
                            keepalive_expiry=120.0
                        ),
                        # 显式超时，避免搜索请求无限挂起拖住整个响应
                        timeout=httpx.Timeout(float(os.getenv("HTTP_TIMEOUT", "60.0")), connect=5.0),
                        http2=True
                    )
        return cls._async_client

    @classmethod
    def set_async_http_client(cls, client: httpx.AsyncClient):
        """替换共享客户端（测试时注入 MockTransport）"""
        cls._async_client = client

    @classmethod
    async def close(cls):
        """系统关闭时调用"""
        if cls._async_client:
            await cls._async_client.aclose()
            cls._async_client = None
