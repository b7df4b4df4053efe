import os
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Sequence

from langgraph.graph import StateGraph

from aira_relay.llm_api.llm_client import LLMClient
from aira_relay.utils.log_util import logger_pool


class BaseAgent(ABC):
    # 未显式传入 api_key 时依次读取的环境变量
    api_key_env_vars: Sequence[str] = ()

    def __init__(
            self,
            name: str = "base-agent",
            model: str = "",
            base_url: str = "",
            api_key: Optional[str] = None,
            max_tokens: Optional[int] = None,
            temperature: Optional[float] = None,
            top_p: Optional[float] = None,
            timeout: float = 60.0,
            max_retries: int = 0,
    ):
        self.name = name

        # 保存初始化配置状态
        self.init_config = {
            "model": model,
            "base_url": base_url,
            "api_key": api_key or self._api_key_from_env(),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": top_p,
            "timeout": timeout,
            "max_retries": max_retries,
        }

        # 配置日志
        self.logger = logger_pool.get_logger(name)

        # 检查LLM配置完整性
        self._llm_configured = self._check_llm_config_completeness()

        # 初始化 LLM客户端
        self.llm_client = self._setup_llm_client()

        self.logger.info(f"✅ {self.name} 初始化完成")

    def _api_key_from_env(self) -> Optional[str]:
        for env_var in self.api_key_env_vars:
            env_key = os.getenv(env_var)
            if env_key:
                return env_key
        return None

    def _missing_configs(self):
        return [config for config in ("model", "base_url", "api_key") if not self.init_config[config]]

    def _check_llm_config_completeness(self) -> bool:
        """检查LLM配置是否完整"""
        missing_configs = self._missing_configs()
        if missing_configs:
            self.logger.warning(f"LLM配置不完整，缺失: {missing_configs}")
            return False
        return True

    def _setup_llm_client(self) -> Optional[LLMClient]:
        """初始化LLM客户端"""
        if not self._llm_configured:
            self.logger.info("LLM配置不完整，相关请求将返回配置错误")
            return None

        return LLMClient(
            model=self.init_config["model"],
            base_url=self.init_config["base_url"],
            api_key=self.init_config["api_key"],
            api_key_env_vars=self.api_key_env_vars,
            temperature=self.init_config["temperature"],
            max_tokens=self.init_config["max_tokens"],
            top_p=self.init_config["top_p"],
            timeout=self.init_config["timeout"],
            max_retries=self.init_config["max_retries"],
        )

    def missing_config_message(self) -> str:
        if "api_key" in self._missing_configs() and self.api_key_env_vars:
            return f"{self.api_key_env_vars[0]} is not configured"
        return f"LLM配置不完整，缺失: {self._missing_configs()}"

    def get_llm_client(self) -> LLMClient:
        """获取LLM客户端，配置不完整时抛出 ValueError"""
        if self.llm_client is not None:
            return self.llm_client

        message = self.missing_config_message()
        self.logger.error(message)
        raise ValueError(message)

    @property
    def is_llm_configured(self) -> bool:
        return self._llm_configured

    def get_config_status(self) -> Dict[str, Any]:
        return {
            "llm_configured": self._llm_configured,
            "init_config": {k: "***" if k == "api_key" and v else v
                            for k, v in self.init_config.items()}
        }

    @abstractmethod
    async def run(self, **kwargs) -> Any:
        pass

    def _build_graph(self) -> Optional[StateGraph]:
        """需要多步工作流的 Agent 覆盖此方法"""
        return None
