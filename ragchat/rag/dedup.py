"""候选去重：按来源标识合并，先出现者优先，保持原有顺序。"""

from typing import Iterable, List

from ragchat.rag.models.candidate import Candidate


def dedupe(hits: Iterable[Candidate]) -> List[Candidate]:
    seen = set()
    unique: List[Candidate] = []
    for hit in hits:
        # identifier 在构造时已回退为 payload 结构化哈希
        if hit.identifier in seen:
            continue
        seen.add(hit.identifier)
        unique.append(hit)
    return unique
