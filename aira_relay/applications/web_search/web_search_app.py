# web_search_app.py
import asyncio
import os
import traceback
import uuid
from typing import List, Optional
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from aira_relay.applications.web_search.web_search_agent import SearchResult, WebSearchAgent
from aira_relay.utils.cors import add_cors
from aira_relay.utils.log_util import logger_pool
from aira_relay.utils.http_factory import GlobalHTTPFactory


# ===== 请求/响应模型 =====
class WebSearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="搜索问题")
    recency_filter: Optional[str] = Field(default=None, description="时效过滤（day/week/month），默认 day")


class WebSearchResponse(BaseModel):
    content: str
    citations: List[str] = Field(default_factory=list)


# ===== 生命周期管理 =====
agent_instance: Optional[WebSearchAgent] = None
app_logger = logger_pool.get_logger("web_search")

@asynccontextmanager
async def lifespan(app: FastAPI):
    global agent_instance, app_logger
    app_name = "web_search"
    app_logger = logger_pool.set_logger_from_env(app_name, "SEARCH")
    app_logger.info("🔧 正在初始化 WebSearchAgent...")
    try:
        agent_instance = WebSearchAgent(
            name=app_name,
            model=os.getenv("SEARCH_MODEL", "sonar"),
            base_url=os.getenv("SEARCH_BASE_URL", "https://api.perplexity.ai"),
            api_key=os.getenv("PERPLEXITY_API_KEY", ""),
            timeout=float(os.getenv("SEARCH_TIMEOUT", "60.0")),
            default_recency_filter=os.getenv("SEARCH_RECENCY_FILTER", "day") or None,
        )
        app_logger.info("✅ WebSearchAgent 初始化完成")
    except Exception as e:
        app_logger.error(f"❌ 初始化失败: {e}")
        raise

    yield

    app_logger.info("🧹 清理资源...")
    await GlobalHTTPFactory.close()
    agent_instance = None


# ===== FastAPI App =====
app = FastAPI(
    title="Aira 联网搜索服务 API",
    description="调用搜索接口返回最新信息和引用链接",
    version="1.0.0",
    lifespan=lifespan,
)

add_cors(app)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    message = "; ".join(str(err.get("msg")) for err in exc.errors()) or "Invalid request body"
    return JSONResponse(status_code=400, content={"error": message})


# ===== 健康检查接口 =====
@app.get("/health", summary="健康检查")
async def health_check():
    if agent_instance is None:
        raise HTTPException(status_code=503, detail="Agent 未初始化")
    return {"status": "OK", "agent": "initialized", "search_configured": agent_instance.is_llm_configured}


@app.options("/search", include_in_schema=False)
async def search_preflight():
    return Response(status_code=200)


# ===== 搜索接口 =====
@app.post("/search", response_model=WebSearchResponse, summary="联网搜索")
async def search_endpoint(request_body: WebSearchRequest):
    if agent_instance is None:
        return JSONResponse(status_code=503, content={"error": "服务未就绪，请稍后再试"})

    request_id = uuid.uuid4().hex
    try:
        result: SearchResult = await agent_instance.run(
            query=request_body.query,
            recency_filter=request_body.recency_filter,
            request_id=request_id,
        )
    except asyncio.CancelledError:
        app_logger.warning(f"🚫 request_id: {request_id} 任务被取消")
        raise
    except Exception as e:
        app_logger.error(f"request_id: {request_id}, 搜索错误: {traceback.format_exc()}")
        return JSONResponse(status_code=500, content={"error": str(e) or "Search failed"})

    return WebSearchResponse(content=result.content, citations=result.citations)


# ===== 启动命令 =====
if __name__ == "__main__":
    uvicorn.run(
        "aira_relay.applications.web_search.web_search_app:app",
        host="0.0.0.0",
        port=int(os.getenv("SEARCH_PORT", "8111")),
        log_level="info"
    )
