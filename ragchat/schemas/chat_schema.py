from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConversationTurn(BaseModel):
    """单轮对话"""

    role: Literal["user", "assistant"]
    content: str = ""


class ChatFlags(BaseModel):
    """检索增强与输出格式开关"""

    hyde_enabled: bool = Field(default=False, alias="hydeEnabled", description="HyDE：先生成假设答案再检索")
    crag_enabled: bool = Field(default=False, alias="cragEnabled", description="CRAG：改写 → 判定 → 细化 → 再检索")
    hybrid_enabled: bool = Field(default=False, alias="hybridEnabled", description="混合打分（加入 BM25 信号）")
    mmr_enabled: bool = Field(default=False, alias="mmrEnabled", description="MMR 多样性重排")
    cross_encoder_enabled: bool = Field(
        default=False, alias="crossEncoderEnabled", description="Cross-Encoder 重排"
    )
    structured_stream_enabled: bool = Field(
        default=False,
        alias="structuredStreamEnabled",
        description="True: NDJSON 事件流；False: 纯文本 + 末尾来源块（兼容模式）",
    )
    use_system_prompt: bool = Field(default=True, alias="useSystemPrompt")

    model_config = ConfigDict(populate_by_name=True)


class ChatRequest(BaseModel):
    """
    RAG 对话请求体

    - messages: 完整对话，最后一条为当前用户问题
    - topK / similarityThreshold: 不传则使用后端默认值
    - flags: 检索增强开关；也兼容把开关平铺在请求体顶层
    - sessionId: 可选，传入时会异步落库
    """

    messages: List[ConversationTurn] = Field(default_factory=list)
    top_k: Optional[int] = Field(default=None, alias="topK", ge=1)
    similarity_threshold: Optional[float] = Field(
        default=None, alias="similarityThreshold", ge=0.0, le=1.0
    )
    flags: ChatFlags = Field(default_factory=ChatFlags)
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=128)

    # 顶层平铺的开关（旧版前端）
    hyde_enabled: Optional[bool] = Field(default=None, alias="hydeEnabled")
    crag_enabled: Optional[bool] = Field(default=None, alias="cragEnabled")
    hybrid_enabled: Optional[bool] = Field(default=None, alias="hybridEnabled")
    mmr_enabled: Optional[bool] = Field(default=None, alias="mmrEnabled")
    cross_encoder_enabled: Optional[bool] = Field(default=None, alias="crossEncoderEnabled")
    structured_stream_enabled: Optional[bool] = Field(default=None, alias="structuredStreamEnabled")
    use_system_prompt: Optional[bool] = Field(default=None, alias="useSystemPrompt")

    model_config = ConfigDict(populate_by_name=True)

    def effective_flags(self) -> ChatFlags:
        """顶层开关优先于 flags 对象中的同名开关"""
        overrides = {
            name: value
            for name in ChatFlags.model_fields
            if (value := getattr(self, name, None)) is not None
        }
        if not overrides:
            return self.flags
        return self.flags.model_copy(update=overrides)

    @property
    def user_message(self) -> str:
        if not self.messages:
            return ""
        return (self.messages[-1].content or "").strip()


class AnalyzeRequest(BaseModel):
    query: str = ""
    limit: int = Field(default=20, ge=1, le=100)


class ScoreBucket(BaseModel):
    lower: float
    upper: float
    count: int


class AnalyzeResponse(BaseModel):
    query: str
    count: int
    max_score: float = Field(0.0, alias="maxScore")
    min_score: float = Field(0.0, alias="minScore")
    mean_score: float = Field(0.0, alias="meanScore")
    median_score: float = Field(0.0, alias="medianScore")
    buckets: List[ScoreBucket] = Field(default_factory=list)
    recommended_threshold: float = Field(0.0, alias="recommendedThreshold")
    recommended_top_k: int = Field(0, alias="recommendedTopK")
    passing_at_recommended: int = Field(0, alias="passingAtRecommended")

    model_config = ConfigDict(populate_by_name=True)


class SuggestionsResponse(BaseModel):
    questions: List[str]
    fallback: bool = False


class StoredMessage(BaseModel):
    id: int
    session_id: str = Field(..., alias="sessionId")
    role: str
    content: str
    sources: list = Field(default_factory=list)
    created_at: Optional[str] = Field(None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class SessionSummary(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    message_count: int = Field(..., alias="messageCount")
    last_message: str = Field("", alias="lastMessage")
    updated_at: Optional[str] = Field(None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)
