from typing import Any, Dict, List, Optional

import openai
from pydantic import BaseModel, Field

from aira_relay.base_agent import BaseAgent
from aira_relay.applications.web_search.web_search_prompt import (
    NO_RESULTS_CONTENT,
    SEARCH_CONTEXT_SYSTEM_MESSAGE,
    WEB_SEARCH_SYSTEM_MESSAGE,
)
from aira_relay.utils.time_count import timer


# ===== 输出结构定义 =====
class SearchResult(BaseModel):
    content: str = Field(description="搜索回答文本")
    citations: List[str] = Field(default_factory=list, description="引用链接")


class SearchFailedError(Exception):
    """搜索接口返回非 2xx"""


# ===== 搜索Agent主类 =====
class WebSearchAgent(BaseAgent):
    api_key_env_vars = ("PERPLEXITY_API_KEY",)

    def __init__(
            self,
            name: str = "web-search-agent",
            base_url: str = "https://api.perplexity.ai",
            api_key: Optional[str] = None,
            timeout: float = 60.0,
            model: str = "sonar",
            default_recency_filter: Optional[str] = "day",
    ):
        # 搜索是单次调用，不做重试
        super().__init__(
            name=name,
            model=model,
            base_url=base_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )
        self.default_recency_filter = default_recency_filter

    def missing_config_message(self) -> str:
        return "Search API is not configured"

    async def run(self, query: str, recency_filter: Optional[str] = None, request_id: str = "") -> SearchResult:
        """
        独立搜索：返回回答文本和引用。

        Raises:
            ValueError: 未配置搜索 API 密钥
            SearchFailedError: 搜索接口返回非 2xx
        """
        llm_client = self.get_llm_client()
        recency_filter = recency_filter or self.default_recency_filter

        self.logger.info(f"request_id: {request_id}, 搜索查询: '{query}'")
        messages = [
            {"role": "system", "content": WEB_SEARCH_SYSTEM_MESSAGE},
            {"role": "user", "content": query},
        ]
        extra_body = {"search_recency_filter": recency_filter} if recency_filter else None

        with timer(self.logger, f"request_id: {request_id}, 搜索请求"):
            try:
                response = await llm_client.acall(messages, extra_body=extra_body)
            except openai.APIStatusError as e:
                self.logger.error(f"request_id: {request_id}, 搜索接口错误: {e.status_code} {e.response.text}")
                raise SearchFailedError("Search failed") from e

        data = response.to_dict()
        content = _first_message_content(data) or NO_RESULTS_CONTENT
        citations = [str(c) for c in data.get("citations") or []]
        self.logger.info(f"request_id: {request_id}, 搜索完成, 引用数: {len(citations)}")
        return SearchResult(content=content, citations=citations)

    async def fetch_context(self, query: str, request_id: str = "") -> str:
        """
        对话增强用的搜索：尽力而为，任何失败都返回空字符串，不影响主请求。
        """
        if self.llm_client is None:
            self.logger.info(f"request_id: {request_id}, 未配置搜索 API, 跳过增强")
            return ""

        messages = [
            {"role": "system", "content": SEARCH_CONTEXT_SYSTEM_MESSAGE},
            {"role": "user", "content": query},
        ]
        self.logger.info(f"request_id: {request_id}, 执行实时搜索: '{query}'")
        try:
            with timer(self.logger, f"request_id: {request_id}, 实时搜索"):
                response = await self.llm_client.acall(messages)
            context = _first_message_content(response.to_dict()) or ""
        except openai.APIStatusError as e:
            self.logger.warning(f"request_id: {request_id}, 搜索接口错误 {e.status_code}, 不使用实时信息继续")
            return ""
        except Exception as e:
            self.logger.warning(f"request_id: {request_id}, 搜索失败, 不使用实时信息继续: {e!r}")
            return ""

        self.logger.info(f"request_id: {request_id}, 搜索成功, 上下文长度: {len(context)}")
        return context


def _first_message_content(data: Dict[str, Any]) -> Optional[str]:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else None
