"""
文本分块：按空白切分，每块不超过指定单词数
"""
from typing import List


def chunk_text(text: str, max_words: int = 500) -> List[str]:
    """
    将文本切分为有界长度的片段

    - 按任意空白切分，保持原始单词顺序
    - 每个片段最多 max_words 个单词，最后一个片段可以更短
    - 空文本（或只含空白）返回空列表
    - 纯函数：相同输入永远得到相同输出

    Args:
        text: 已提取的原始文本
        max_words: 每个片段的最大单词数（必须大于0）

    Returns:
        片段列表
    """
    if max_words <= 0:
        raise ValueError(f"max_words必须大于0: {max_words}")

    words = (text or "").split()
    return [
        " ".join(words[i:i + max_words])
        for i in range(0, len(words), max_words)
    ]
