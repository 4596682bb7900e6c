"""
结构化日志与指标模块
"""
import inspect
import json
import logging
import sys
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional

from interview_engine.config import settings


class StructuredFormatter(logging.Formatter):
    """JSON行日志；引擎异常自动带上 session_id / stage"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
            error = record.exc_info[1]
            error_context = getattr(error, "context", None)
            if callable(error_context):
                for key, value in error_context().items():
                    if value is not None:
                        entry.setdefault(key, value)

        # logger.info(..., extra={"context": {...}})
        context = getattr(record, "context", None)
        if isinstance(context, dict):
            entry.update(context)

        return json.dumps(entry, ensure_ascii=False, default=str)


ENGINE_COUNTERS = (
    "documents_ingested",
    "documents_deleted",
    "fragments_indexed",
    "fragments_failed",
    "retrievals",
    "retrieval_degraded",
    "generation_requests",
    "generation_requests_errors",
    "session_conflicts",
    "turns_committed",
)


class MetricsCollector:
    """进程内计数器 + 累计耗时"""

    def __init__(self):
        self.metrics: Dict[str, Any] = {}
        self.timings: Dict[str, float] = {}
        self.reset()

    def reset(self):
        self.metrics = {name: 0 for name in ENGINE_COUNTERS}
        self.timings = {}

    def increment(self, metric: str, value: int = 1):
        # 未注册的计数器忽略
        if metric in self.metrics:
            self.metrics[metric] += value

    def observe(self, metric: str, seconds: float):
        self.timings[metric] = self.timings.get(metric, 0.0) + seconds

    def set(self, metric: str, value: Any):
        self.metrics[metric] = value

    def get(self, metric: str) -> Any:
        return self.metrics.get(metric, 0)

    def get_all(self) -> Dict[str, Any]:
        """计数器快照；耗时以 <metric>_seconds 形式附带"""
        snapshot = dict(self.metrics)
        snapshot.update({f"{name}_seconds": round(total, 6) for name, total in self.timings.items()})
        return snapshot


metrics = MetricsCollector()


def setup_logger(
    name: str = "interview_engine",
    level: Optional[str] = None
) -> logging.Logger:
    """
    获取模块日志记录器

    Args:
        name: 日志记录器名称（通常为 __name__）
        level: 日志级别，默认取 LOG_LEVEL

    Returns:
        logging.Logger（LOG_FORMAT=json 时输出JSON行）
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper()))

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)
    if settings.LOG_FORMAT == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    logger.addHandler(handler)
    return logger


def _finish(func, metric: str, started: float, failed: bool):
    elapsed = time.perf_counter() - started
    metrics.increment(f"{metric}_errors" if failed else metric)
    metrics.observe(metric, elapsed)
    logging.getLogger(func.__module__).debug(
        f"{func.__name__} {'failed' if failed else 'ok'} in {elapsed:.3f}s"
    )


def log_metric(metric: str):
    """装饰器：成功计入 metric，异常计入 <metric>_errors，并累计耗时"""
    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception:
                    _finish(func, metric, started, failed=True)
                    raise
                _finish(func, metric, started, failed=False)
                return result
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception:
                _finish(func, metric, started, failed=True)
                raise
            _finish(func, metric, started, failed=False)
            return result
        return sync_wrapper

    return decorator


default_logger = setup_logger()
