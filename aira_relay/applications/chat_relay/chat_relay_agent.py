from typing import AsyncIterator, List, Optional, TypedDict, Union

import httpx
from pydantic import BaseModel, Field
from langgraph.graph import StateGraph, END
from langchain_core.runnables import RunnableConfig

from aira_relay.base_agent import BaseAgent
from aira_relay.applications.chat_relay.chat_relay_prompt import build_system_prompt, needs_realtime_search
from aira_relay.applications.web_search.web_search_agent import WebSearchAgent
from aira_relay.llm_api.chat_message import ChatMessage, has_images, latest_user_query
from aira_relay.utils.time_count import timer


# 上游状态码 -> (返回给调用方的状态码, 提示信息)
UPSTREAM_ERROR_MAP = {
    429: (429, "Rate limit exceeded. Please try again later."),
    402: (402, "Usage limit reached. Please add credits to continue."),
}
GENERIC_UPSTREAM_ERROR = (500, "AI service error. Please try again.")


# ===== 中继结果 =====
class RelayError(BaseModel):
    status_code: int = Field(description="返回给调用方的状态码")
    error: str = Field(description="返回给调用方的错误信息")


class RelayStream:
    """上游 2xx 响应的透传包装，字节原样转发"""

    def __init__(self, response: httpx.Response, logger, request_id: str = ""):
        self.response = response
        self.logger = logger
        self.request_id = request_id
        self.bytes_relayed = 0
        self.closed = False

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self.response.aiter_bytes():
            self.bytes_relayed += len(chunk)
            yield chunk

    async def aclose(self):
        if self.closed:
            return
        self.closed = True
        await self.response.aclose()
        self.logger.info(f"request_id: {self.request_id}, 流式响应结束, 转发字节数: {self.bytes_relayed}")


# ===== 状态定义 =====
class ChatRelayState(TypedDict, total=False):
    messages: List[ChatMessage]
    web_search_requested: bool
    user_query: str
    has_images: bool
    needs_realtime: bool
    search_context: str
    system_prompt: str


# ===== 对话中继Agent主类 =====
class ChatRelayAgent(BaseAgent):
    api_key_env_vars = ("LOVABLE_API_KEY",)

    def __init__(
            self,
            name: str = "chat-relay-agent",
            base_url: str = "https://ai.gateway.lovable.dev/v1",
            api_key: Optional[str] = None,
            timeout: float = 60.0,
            model: str = "google/gemini-2.5-pro",
            search_agent: Optional[WebSearchAgent] = None,
    ):
        super().__init__(
            name=name,
            model=model,
            base_url=base_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )
        self.search_agent = search_agent or WebSearchAgent(name=name)

        # 构建工作流图
        self.graph = self._build_graph()

    def _build_graph(self):
        """构建 LangGraph 工作流：意图判断 -> (可选)搜索增强 -> 系统提示拼装"""
        graph = StateGraph(ChatRelayState)

        def classify_node(state: ChatRelayState, config: RunnableConfig) -> ChatRelayState:
            """意图节点：提取最新用户问题并判断是否需要实时信息（只判断一次）"""
            request_id = config.get("configurable", {}).get("request_id")
            messages = state["messages"]
            user_query = latest_user_query(messages)
            needs_realtime = needs_realtime_search(user_query)
            images = has_images(messages)

            self.logger.info(
                f"request_id: {request_id}, 消息数: {len(messages)}, 含图片: {images}, "
                f"请求联网: {state.get('web_search_requested', False)}, 需要实时信息: {needs_realtime}"
            )
            return {"user_query": user_query, "needs_realtime": needs_realtime, "has_images": images}

        def route_after_classify(state: ChatRelayState) -> str:
            if state.get("web_search_requested") or state.get("needs_realtime"):
                return "augment"
            return "assemble"

        async def augment_node(state: ChatRelayState, config: RunnableConfig) -> ChatRelayState:
            """增强节点：调用搜索接口获取实时信息，失败则不带上下文继续"""
            request_id = config.get("configurable", {}).get("request_id")
            if not state.get("user_query"):
                self.logger.info(f"request_id: {request_id}, 无文本问题, 跳过搜索")
                return {"search_context": ""}

            search_context = await self.search_agent.fetch_context(state["user_query"], request_id=request_id)
            return {"search_context": search_context}

        def assemble_node(state: ChatRelayState, config: RunnableConfig) -> ChatRelayState:
            """拼装节点：生成系统提示"""
            return {"system_prompt": build_system_prompt(state.get("search_context", ""))}

        graph.add_node("classify", classify_node)
        graph.add_node("augment", augment_node)
        graph.add_node("assemble", assemble_node)

        graph.set_entry_point("classify")
        graph.add_conditional_edges(
            "classify",
            route_after_classify,
            {"augment": "augment", "assemble": "assemble"},
        )
        graph.add_edge("augment", "assemble")
        graph.add_edge("assemble", END)

        return graph.compile()

    async def prepare(
            self,
            messages: List[ChatMessage],
            web_search_requested: bool = False,
            request_id: str = "",
    ) -> ChatRelayState:
        """执行准备工作流，返回包含系统提示的最终状态"""
        initial_state: ChatRelayState = {
            "messages": messages,
            "web_search_requested": web_search_requested,
            "search_context": "",
        }
        with timer(self.logger, f"request_id: {request_id}, 准备系统提示"):
            return await self.graph.ainvoke(initial_state, config={"configurable": {"request_id": request_id}})

    async def open_stream(
            self,
            messages: List[ChatMessage],
            system_prompt: str,
            request_id: str = "",
    ) -> Union[RelayStream, RelayError]:
        """向上游发起流式请求；非 2xx 转换为调用方可见的错误，上游错误正文只写日志"""
        llm_client = self.get_llm_client()
        upstream_messages = [{"role": "system", "content": system_prompt}]
        upstream_messages.extend(message.to_openai() for message in messages)

        response = await llm_client.open_raw_stream(upstream_messages)

        if not response.is_success:
            try:
                error_text = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            self.logger.error(f"request_id: {request_id}, 上游接口错误: {response.status_code} {error_text}")
            status_code, message = UPSTREAM_ERROR_MAP.get(response.status_code, GENERIC_UPSTREAM_ERROR)
            return RelayError(status_code=status_code, error=message)

        self.logger.info(f"request_id: {request_id}, 流式响应开始")
        return RelayStream(response, self.logger, request_id=request_id)

    async def run(
            self,
            messages: List[ChatMessage],
            web_search_requested: bool = False,
            request_id: str = "",
    ) -> Union[RelayStream, RelayError]:
        # 配置错误在任何网络请求之前暴露
        self.get_llm_client()

        state = await self.prepare(messages, web_search_requested, request_id=request_id)
        return await self.open_stream(messages, state["system_prompt"], request_id=request_id)
