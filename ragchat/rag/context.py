"""
上下文拼接

把入选片段用分隔符拼成一段上下文；上下文过短或检索查询经过改写（语言可能不同）时追加提示。
追加提示前先检查是否已存在，重复调用不会重复追加。
"""

from typing import List

from ragchat.rag.models.candidate import ScoredCandidate

SEPARATOR = "\n---\n"

BELOW_THRESHOLD_MARKER = (
    "[Below-threshold context: none of the retrieved passages cleared the relevance bar. "
    "Treat them as loosely related background only.]"
)

THIN_CONTEXT_NOTE = (
    "[Note: The retrieved context is limited. Rely on general domain knowledge to complete the answer, "
    "and do not invent specific figures, citations or sources that are not present in the context.]"
)

LANGUAGE_NOTE = (
    "[Note: The context may be written in a different language from the question. "
    "Answer in the language of the user's question.]"
)


def append_note(context: str, note: str) -> str:
    if not context or note in context:
        return context
    return f"{context}\n\n{note}"


class ContextAssembler:
    def __init__(self, min_chars: int = 400):
        self.min_chars = min_chars

    def assemble(
        self,
        selected: List[ScoredCandidate],
        below_threshold: bool = False,
        query_rewritten: bool = False,
    ) -> str:
        texts = [c.text.strip() for c in selected if c.text and c.text.strip()]
        if not texts:
            return ""

        context = SEPARATOR.join(texts)
        if below_threshold:
            context = f"{BELOW_THRESHOLD_MARKER}\n{context}"

        if len(context) < self.min_chars:
            context = append_note(context, THIN_CONTEXT_NOTE)
        if query_rewritten:
            context = append_note(context, LANGUAGE_NOTE)
        return context
