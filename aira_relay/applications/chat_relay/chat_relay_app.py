# chat_relay_app.py
import asyncio
import os
import traceback
import uuid
from typing import List, Optional
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from pydantic import BaseModel, ConfigDict, Field, field_validator

from aira_relay.applications.chat_relay.chat_relay_agent import ChatRelayAgent, RelayError
from aira_relay.applications.web_search.web_search_agent import WebSearchAgent
from aira_relay.llm_api.chat_message import ChatMessage
from aira_relay.utils.cors import add_cors
from aira_relay.utils.log_util import logger_pool
from aira_relay.utils.http_factory import GlobalHTTPFactory


# ===== 请求/响应模型 =====
class ChatRelayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage] = Field(..., min_length=1, description="对话历史，最后一条为待回复的用户消息")
    web_search: bool = Field(default=False, alias="webSearch", description="是否强制联网搜索")

    @field_validator("messages")
    @classmethod
    def _ends_with_user(cls, value: List[ChatMessage]):
        if value and value[-1].role != "user":
            raise ValueError("最后一条消息必须是用户消息")
        return value


class ErrorResponse(BaseModel):
    error: str


# ===== 生命周期管理 =====
agent_instance: Optional[ChatRelayAgent] = None
app_logger = logger_pool.get_logger("chat_relay")

@asynccontextmanager
async def lifespan(app: FastAPI):
    global agent_instance, app_logger
    app_name = "chat_relay"
    app_logger = logger_pool.set_logger_from_env(app_name, "CHAT")
    app_logger.info("🔧 正在初始化 ChatRelayAgent...")
    try:
        search_agent = WebSearchAgent(
            name=app_name,
            model=os.getenv("SEARCH_MODEL", "sonar"),
            base_url=os.getenv("SEARCH_BASE_URL", "https://api.perplexity.ai"),
            api_key=os.getenv("PERPLEXITY_API_KEY", ""),
            timeout=float(os.getenv("SEARCH_TIMEOUT", "60.0")),
        )
        agent_instance = ChatRelayAgent(
            name=app_name,
            model=os.getenv("CHAT_MODEL", "google/gemini-2.5-pro"),
            base_url=os.getenv("CHAT_BASE_URL", "https://ai.gateway.lovable.dev/v1"),
            api_key=os.getenv("LOVABLE_API_KEY", ""),
            timeout=float(os.getenv("CHAT_TIMEOUT", "60.0")),
            search_agent=search_agent,
        )
        app_logger.info("✅ ChatRelayAgent 初始化完成")
    except Exception as e:
        app_logger.error(f"❌ 初始化失败: {e}")
        raise

    yield

    app_logger.info("🧹 清理资源...")
    await GlobalHTTPFactory.close()
    agent_instance = None


# ===== FastAPI App =====
app = FastAPI(
    title="Aira 对话中继服务 API",
    description="判断实时意图、按需联网搜索增强系统提示，并将上游对话补全的 SSE 流原样转发给调用方",
    version="1.0.0",
    lifespan=lifespan,
)

add_cors(app)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(loc) for loc in err.get('loc', ()) if loc != 'body')}: {err.get('msg')}"
        for err in errors
    ) or "Invalid request body"
    app_logger.warning(f"请求体校验失败: {message}")
    return error_response(400, message)


# ===== 健康检查接口 =====
@app.get("/health", summary="健康检查")
async def health_check():
    if agent_instance is None:
        raise HTTPException(status_code=503, detail="Agent 未初始化")
    return {
        "status": "OK",
        "agent": "initialized",
        "llm_configured": agent_instance.is_llm_configured,
        "search_configured": agent_instance.search_agent.is_llm_configured,
    }


@app.options("/chat", include_in_schema=False)
async def chat_preflight():
    return Response(status_code=200)


# ===== 对话中继接口 =====
@app.post(
    "/chat",
    summary="对话中继（SSE 透传）",
    responses={429: {"model": ErrorResponse}, 402: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def chat_endpoint(request_body: ChatRelayRequest, raw_request: Request):
    """
    对话中继接口：
    - 成功：200 + text/event-stream，正文是上游 SSE 流的原始字节
    - 上游 429/402：原样返回对应状态码和友好提示
    - 其他错误：500 + {"error": "..."}
    """
    if agent_instance is None:
        return error_response(503, "服务未就绪，请稍后再试")

    request_id = uuid.uuid4().hex
    try:
        result = await agent_instance.run(
            messages=request_body.messages,
            web_search_requested=request_body.web_search,
            request_id=request_id,
        )
    except asyncio.CancelledError:
        app_logger.warning(f"🚫 request_id: {request_id} 任务被取消")
        raise
    except Exception as e:
        app_logger.error(f"request_id: {request_id}, 对话中继错误: {traceback.format_exc()}")
        return error_response(500, str(e) or "Unknown error")

    if isinstance(result, RelayError):
        return error_response(result.status_code, result.error)

    async def relay_sse():
        try:
            async for chunk in result.aiter_bytes():
                # ★ 调用方断开后停止转发
                if await raw_request.is_disconnected():
                    app_logger.warning(f"🚫 request_id: {request_id} [Stream] 客户端断开连接")
                    break
                yield chunk
        except asyncio.CancelledError:
            app_logger.warning(f"🚫 request_id: {request_id} [Stream] 任务被系统取消")
            raise
        finally:
            await result.aclose()

    return StreamingResponse(
        relay_sse(),
        media_type="text/event-stream",
        background=BackgroundTask(result.aclose),
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        }
    )


# ===== 启动命令 =====
if __name__ == "__main__":
    uvicorn.run(
        "aira_relay.applications.chat_relay.chat_relay_app:app",
        host="0.0.0.0",
        port=int(os.getenv("CHAT_PORT", "8110")),
        log_level="info"
    )
