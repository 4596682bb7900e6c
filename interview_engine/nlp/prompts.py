"""
模板与JSON schema
"""
from pathlib import Path
from typing import Any, Dict, Optional, Set

from langchain_core.prompts import ChatPromptTemplate

from interview_engine.core.errors import EngineError
from interview_engine.core.types import Evaluation
from interview_engine.logs import setup_logger

logger = setup_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

# 服务渲染时传入的变量；模板占位符必须与之完全一致
TEMPLATE_VARIABLES: Dict[str, Set[str]] = {
    "evaluation": {"question", "answer", "resume_context", "jd_context"},
    "opening_questions": {"count", "jd_text"},
}


class PromptError(EngineError):
    """Prompt模板错误异常"""
    pass


class PromptManager:
    """Prompt模板管理器（LangChain ChatPromptTemplate）"""

    def __init__(
        self,
        templates_dir: Path = TEMPLATES_DIR,
        expected_variables: Optional[Dict[str, Set[str]]] = None
    ):
        self.templates_dir = templates_dir
        self.expected_variables = TEMPLATE_VARIABLES if expected_variables is None else expected_variables
        self._prompts: Dict[str, ChatPromptTemplate] = {}
        self._schemas: Dict[str, Dict[str, Any]] = {}
        self._load_prompts()

    def _load_prompts(self):
        """加载所有prompt模板为ChatPromptTemplate对象"""
        for file_path in sorted(self.templates_dir.glob("*.txt")):
            name = file_path.stem  # 文件名（不含扩展名）
            template_text = file_path.read_text(encoding="utf-8")
            template = ChatPromptTemplate.from_template(template_text)
            self._check_variables(name, template)
            self._prompts[name] = template
            logger.debug(f"加载Prompt模板: {name}")

        missing = set(self.expected_variables) - set(self._prompts)
        if missing:
            raise PromptError(f"缺少Prompt模板: {sorted(missing)}", stage="prompt")

    def _check_variables(self, name: str, template: ChatPromptTemplate):
        expected = self.expected_variables.get(name)
        if expected is None:
            return
        declared = set(template.input_variables)
        if declared != expected:
            raise PromptError(
                f"Prompt模板 '{name}' 变量不匹配: 期望 {sorted(expected)}，实际 {sorted(declared)}",
                stage="prompt"
            )

    def get_prompt(self, name: str) -> ChatPromptTemplate:
        """
        获取prompt模板（ChatPromptTemplate对象）

        Args:
            name: prompt名称（文件名，不含扩展名）

        Returns:
            ChatPromptTemplate对象

        Raises:
            PromptError: 模板不存在时抛出
        """
        template = self._prompts.get(name)
        if not template:
            raise PromptError(f"Prompt模板 '{name}' 不存在", stage="prompt")
        return template

    def render(self, name: str, **variables: Any) -> str:
        """
        渲染模板为纯文本

        Raises:
            PromptError: 模板不存在或缺少变量
        """
        template = self.get_prompt(name)
        try:
            messages = template.format_messages(**variables)
        except (KeyError, ValueError) as e:
            raise PromptError(f"Prompt模板 '{name}' 缺少变量: {e}", cause=e, stage="prompt")
        return "\n".join(str(m.content) for m in messages)

    def register_schema(self, name: str, schema: Dict[str, Any]):
        """注册JSON schema"""
        self._schemas[name] = schema

    def get_schema(self, name: str) -> Optional[Dict[str, Any]]:
        """获取JSON schema"""
        return self._schemas.get(name)


# 结构化评估JSON schema（字段名使用线上别名：nextQuestion / citationIndices）
EVALUATION_SCHEMA = Evaluation.model_json_schema(by_alias=True)


# 全局prompt管理器
prompt_manager = PromptManager()
prompt_manager.register_schema("evaluation", EVALUATION_SCHEMA)
