"""
向量编解码：存储边界上的类型化定长数值序列
"""
import json
import math
from numbers import Real
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from interview_engine.core.errors import VectorDecodeError


def encode_vector(vector: Sequence[float]) -> List[float]:
    """
    编码向量为可持久化的 float 列表（DOUBLE PRECISION[] / JSON数组）

    Python float 与 float8 均为 IEEE-754 双精度，往返无损。

    Args:
        vector: 向量（list、tuple 或 numpy 数组）

    Returns:
        float 列表
    """
    if isinstance(vector, np.ndarray):
        vector = vector.astype(np.float64).tolist()
    return [float(v) for v in vector]


def decode_vector(raw: Any, dimension: Optional[int] = None) -> Tuple[float, ...]:
    """
    解码持久化的向量并校验

    Args:
        raw: 存储中读出的值（数值序列，或旧数据中的JSON字符串）
        dimension: 期望维度（可选）

    Returns:
        float 元组

    Raises:
        VectorDecodeError: 类型、数值或长度不合法
    """
    if raw is None:
        raise VectorDecodeError("向量为空", stage="decode")

    # 兼容旧数据：JSON字符串编码的向量
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise VectorDecodeError(f"向量JSON解析失败: {e}", cause=e, stage="decode")

    if isinstance(raw, np.ndarray):
        raw = raw.tolist()

    if not isinstance(raw, (list, tuple)):
        raise VectorDecodeError(f"向量类型不合法: {type(raw).__name__}", stage="decode")

    if not raw:
        raise VectorDecodeError("向量长度为0", stage="decode")

    values = []
    for i, item in enumerate(raw):
        if isinstance(item, bool) or not isinstance(item, Real):
            raise VectorDecodeError(f"向量第{i}个元素不是数值: {item!r}", stage="decode")
        value = float(item)
        if not math.isfinite(value):
            raise VectorDecodeError(f"向量第{i}个元素不是有限数值: {item!r}", stage="decode")
        values.append(value)

    if dimension is not None and len(values) != dimension:
        raise VectorDecodeError(
            f"向量维度不匹配: 期望 {dimension}，实际 {len(values)}",
            stage="decode"
        )

    return tuple(values)
