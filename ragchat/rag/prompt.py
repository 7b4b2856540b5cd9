"""
Prompt 模板

回答生成、查询改写、HyDE、CRAG 判定、历史摘要等步骤使用的提示词
"""

from typing import List, Optional

from ragchat.schemas.chat_schema import ConversationTurn

SYSTEM_PROMPT = """You are a knowledgeable and helpful assistant with access to a curated knowledge base. Your role is to:

1. **Provide Accurate Information**: Use the retrieved context to give precise, factual answers
2. **Maintain Context**: Reference previous conversation history when relevant
3. **Be Helpful and Comprehensive**: Offer clear explanations and practical guidance
4. **Use Available Context**: Base your responses on the provided documents when available

**Guidelines:**
- If the context doesn't contain relevant information, still answer from general domain knowledge
- Never invent specific figures, citations or sources that are not in the context
- Be conversational but professional
- Use markdown formatting for better readability
- Keep responses concise but comprehensive
- Never reply with "no information found" or "cannot answer"; always give the most helpful answer you can

**Response Format:**
- Start with a direct answer to the question
- Provide specific details from the available context when possible
- Use bullet points or numbered lists for complex information
- End with a brief summary or next steps if applicable"""

PLAIN_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Provide direct, factual answers based on the user's questions."
)


def resolve_system_prompt(use_system_prompt: bool = True, custom_prompt: Optional[str] = None) -> str:
    """关闭系统提示词时使用中性提示；自定义提示词非空时覆盖默认值"""
    if not use_system_prompt:
        return PLAIN_SYSTEM_PROMPT
    if custom_prompt and custom_prompt.strip():
        return custom_prompt
    return SYSTEM_PROMPT


def format_history(history: List[ConversationTurn]) -> str:
    return "\n".join(
        f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}" for turn in history
    )


def build_rag_prompt(context: str, user_question: str) -> str:
    return f"""Based on the following information from the knowledge base, please answer the user's question:

**Knowledge Base Context:**
{context}

**User Question:** {user_question}

**Instructions:**
- Use the provided context to answer the question accurately
- If the context doesn't contain enough information, still answer from general domain knowledge
- Provide specific details and examples from the context when possible
- Format your response clearly and professionally
- Always provide a helpful answer, even if the retrieved context doesn't directly mention the specific topic

**Answer:**"""


def build_conversation_prompt(
    context: str,
    user_question: str,
    history: List[ConversationTurn],
    summary: Optional[str] = None,
    use_system_prompt: bool = True,
) -> str:
    """带历史的 RAG 提示词；有摘要时用摘要代替逐轮历史"""
    if summary:
        history_section = f"**Conversation Summary:**\n{summary}\n\n"
    elif history:
        history_section = f"**Conversation History:**\n{format_history(history)}\n\n"
    else:
        history_section = ""

    plain_line = (
        ""
        if use_system_prompt
        else "\n- Provide direct, factual answers without any specific personality or style constraints"
    )

    return f"""{history_section}**Retrieved Documents:**
{context}

**Current Question:** {user_question}

**Instructions:**
- Use the conversation history to provide context-aware responses
- Reference previous questions and answers when relevant
- Use the retrieved documents as your primary source of information
- If the context doesn't contain relevant information, still answer from general domain knowledge
- Always provide a helpful answer, even if the retrieved context doesn't directly mention the specific topic{plain_line}

**Response:**"""


def build_summary_prompt(history: List[ConversationTurn]) -> str:
    return f"""Summarize the following conversation in at most 5 short bullet points.
Keep names, numbers and the user's open questions. Do not add anything that was not said.

{format_history(history)}

**Summary:**"""


def build_rewrite_prompt(query: str) -> str:
    return f"""Rewrite the user's question into a standalone search query for a document retriever.
- Translate it to English if it is written in another language
- Keep technical terms, acronyms and names exactly as written
- Remove greetings and filler words
- Output only the rewritten query, on one line, without quotes

**Question:** {query}

**Search query:**"""


def build_hyde_prompt(query: str) -> str:
    return f"""Write a short, factual passage (3-5 sentences) that would appear in a reference document and directly answers the question below.
Do not mention that the passage is hypothetical. Output only the passage.

**Question:** {query}

**Passage:**"""


def build_judge_prompt(query: str, passages: List[str]) -> str:
    numbered = "\n\n".join(f"[{i + 1}] {p[:800]}" for i, p in enumerate(passages))
    return f"""You are grading retrieved passages for a search system.
Decide whether the passages below are sufficient to answer the question.

**Question:** {query}

**Passages:**
{numbered}

Respond with JSON only, one of:
{{"action": "keep"}}
{{"action": "refine", "hint": "<what information is missing or which terms to search for>"}}"""


def build_refine_prompt(query: str, hint: str) -> str:
    return f"""The previous search for the question below did not return enough relevant documents.
Using the hint, write one improved search query.
- Output only the query, on one line, without quotes

**Question:** {query}
**Hint:** {hint}

**Improved search query:**"""


def build_suggestions_prompt(snippets: List[str], count: int) -> str:
    context = "\n".join(f"[#{i + 1}] {s}" for i, s in enumerate(snippets))
    return f"""You are to generate {count} user-friendly sample questions that a user might ask based on the following knowledge snippets. Questions should be concise (max 18 words), helpful, and varied. Output as a JSON array of strings only, with no extra commentary or code fences.

Snippets:
{context}"""
