"""
生成服务客户端 - 使用 OpenAI SDK
无状态的请求/响应边界：自由文本或经schema校验的结构化对象
"""
import asyncio
import re
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

import httpx
from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, ValidationError

from interview_engine.core.config import EngineSettings
from interview_engine.core.errors import GenerationServiceError
from interview_engine.logs import setup_logger, log_metric

logger = setup_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_CODE_FENCE = re.compile(r"^```[A-Za-z0-9_-]*\s*|\s*```$")


class GenerationConfig(BaseModel):
    """生成客户端的显式配置（构造时传入，客户端内部不读取全局配置）"""
    api_key: str
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float = 0.5
    max_tokens: int = 512
    timeout: float = 30.0
    max_concurrent: int = 10

    @classmethod
    def from_settings(cls, config: EngineSettings) -> "GenerationConfig":
        return cls(
            api_key=config.LLM_API_KEY,
            base_url=config.LLM_BASE_URL,
            model=config.LLM_MODEL,
            temperature=config.LLM_TEMPERATURE,
            max_tokens=config.LLM_MAX_TOKENS,
            timeout=config.GENERATION_TIMEOUT,
        )


class GenerationClient(Protocol):
    """文本生成服务接口"""

    async def generate(self, prompt: str) -> str: ...

    async def generate_structured(self, prompt: str, schema: Type[ModelT]) -> ModelT: ...


def strip_code_fences(text: str) -> str:
    """去掉模型输出外层的 ```json ... ``` 包裹"""
    t = text.strip()
    if t.startswith("```") and t.endswith("```"):
        t = _CODE_FENCE.sub("", t)
    return t.strip()


def parse_structured(content: str, schema: Type[ModelT]) -> ModelT:
    """
    按schema校验结构化输出（不做隐式修正）

    Raises:
        GenerationServiceError: 内容不是合法JSON或未通过schema校验
    """
    try:
        return schema.model_validate_json(strip_code_fences(content))
    except ValidationError as e:
        raise GenerationServiceError(
            f"结构化输出未通过schema校验: {e.error_count()} 个错误",
            cause=e,
            stage="validate"
        )


class OpenAIGenerationClient:
    """OpenAI兼容的生成服务客户端；超时即失败，不自动重试"""

    def __init__(self, config: GenerationConfig):
        if not config.api_key:
            raise ValueError("LLM_API_KEY未设置")
        self.config = config
        # Semaphore / AsyncClient 需要在事件循环中创建，所以延迟初始化
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._http_client: Optional[httpx.AsyncClient] = None
        self.async_client: Optional[AsyncOpenAI] = None

    def _ensure_async_client(self):
        """确保 async_client 已初始化（延迟初始化）"""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        if self.async_client is None:
            limits = httpx.Limits(max_keepalive_connections=20, max_connections=20)
            timeout = httpx.Timeout(self.config.timeout, connect=10.0)
            self._http_client = httpx.AsyncClient(limits=limits, timeout=timeout)
            self.async_client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                http_client=self._http_client,
                timeout=self.config.timeout,
                max_retries=0  # 重试策略由调用方决定
            )

    async def _complete(self, messages: list, response_format: Optional[Dict[str, Any]] = None) -> str:
        self._ensure_async_client()

        params: Dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if response_format:
            params["response_format"] = response_format

        async with self._semaphore:
            try:
                response = await asyncio.wait_for(
                    self.async_client.chat.completions.create(**params),
                    timeout=self.config.timeout
                )
            except asyncio.TimeoutError as e:
                logger.error(f"生成服务调用超时: timeout={self.config.timeout}s")
                raise GenerationServiceError("生成服务调用超时", cause=e, stage="generate")
            except APIError as e:
                logger.error(f"生成服务调用失败: {e}")
                raise GenerationServiceError(f"生成服务调用失败: {e}", cause=e, stage="generate")

        content = None
        if response.choices:
            message = response.choices[0].message
            content = message.content if message else None
        if not content:
            raise GenerationServiceError("生成服务返回空内容", stage="generate")
        return content

    @log_metric("generation_requests")
    async def generate(self, prompt: str) -> str:
        """
        生成自由文本

        Args:
            prompt: 完整prompt

        Returns:
            生成的文本

        Raises:
            GenerationServiceError: 调用失败、超时或返回空内容
        """
        return await self._complete([{"role": "user", "content": prompt}])

    @log_metric("generation_requests")
    async def generate_structured(self, prompt: str, schema: Type[ModelT]) -> ModelT:
        """
        生成结构化对象（JSON schema约束 + pydantic校验）

        Raises:
            GenerationServiceError: 调用失败、超时或未通过schema校验
        """
        response_format = {
            "type": "json_schema",
            "json_schema": {
                "name": schema.__name__.lower(),
                "schema": schema.model_json_schema(by_alias=True),
            },
        }
        content = await self._complete(
            [{"role": "user", "content": prompt}],
            response_format=response_format
        )
        return parse_structured(content, schema)

    async def close(self):
        """关闭 HTTP 客户端连接"""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
            self.async_client = None
