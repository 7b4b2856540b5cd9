"""
候选文档数据模型

定义召回、打分、过滤阶段的文档表示
"""

import hashlib
import json
import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# 按优先级尝试的字段名
_TEXT_KEYS = ("text", "content", "page_content", "pageContent")
_SOURCE_KEY_KEYS = ("source_key", "sourceKey", "chunk_id", "id")


@dataclass(frozen=True)
class Payload:
    """
    召回结果的 payload

    向量库返回的是无类型的 key/value 字典，这里收敛为带类型的结构：
    必填 text，可选 title / source_key / source，其余字段放入 extras。
    """

    text: str
    title: Optional[str] = None
    source_key: Optional[str] = None
    source: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "Payload":
        raw = dict(raw or {})
        metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}

        text = ""
        for key in _TEXT_KEYS:
            value = raw.get(key)
            if isinstance(value, str) and value:
                text = value
                break
        if not text:
            # 没有正文字段时退化为整个 payload 的 JSON
            text = json.dumps(raw, ensure_ascii=False, sort_keys=True, default=str)

        title = raw.get("title") or metadata.get("title")

        source_key = None
        for key in _SOURCE_KEY_KEYS:
            value = raw.get(key)
            if value is not None and str(value) != "":
                source_key = str(value)
                break

        source = raw.get("source") or metadata.get("source")

        consumed = set(_TEXT_KEYS) | set(_SOURCE_KEY_KEYS) | {"title", "source"}
        extras = {k: v for k, v in raw.items() if k not in consumed}

        return cls(
            text=text,
            title=str(title) if title else None,
            source_key=source_key,
            source=str(source) if source else None,
            extras=extras,
        )

    def structural_hash(self) -> str:
        """payload 的结构化哈希，没有来源标识时用于去重"""
        body = json.dumps(
            {
                "text": self.text,
                "title": self.title,
                "source": self.source,
                "extras": self.extras,
            },
            ensure_ascii=False,
            sort_keys=True,
            default=str,
        )
        return hashlib.sha1(body.encode("utf-8")).hexdigest()

    @property
    def display_source(self) -> str:
        """展示用来源名：去掉路径前缀，只保留文件名"""
        if not self.source:
            return self.title or "Unknown Source"
        normalized = self.source.replace("\\", "/").rstrip("/")
        return posixpath.basename(normalized) or self.source


@dataclass
class Candidate:
    """
    召回候选文档

    身份由来源标识决定，而不是对象身份：来源标识相同的两条命中视为同一候选。
    """

    identifier: str
    raw_score: float  # 向量库原始相似度
    payload: Payload
    channel: str = "literal"  # 召回通道："hyde" / "literal" / "refined"

    @classmethod
    def from_hit(cls, score: float, raw_payload: Dict[str, Any], channel: str = "literal") -> "Candidate":
        payload = Payload.from_raw(raw_payload)
        identifier = payload.source_key or payload.structural_hash()
        return cls(identifier=identifier, raw_score=float(score), payload=payload, channel=channel)

    @property
    def text(self) -> str:
        return self.payload.text

    def __hash__(self):
        return hash(self.identifier)

    def __eq__(self, other):
        """相等性判断：仅比较 identifier"""
        if not isinstance(other, Candidate):
            return False
        return self.identifier == other.identifier


@dataclass
class ScoredCandidate:
    """
    打分后的候选文档

    combined_score 只由 (raw_score, 文本, 元数据, 查询) 决定，没有随机成分。
    used_in_context 仅当候选通过动态过滤时为 True；兜底强制纳入的候选为 False。
    """

    candidate: Candidate
    combined_score: float
    keyword_overlap: float = 0.0
    used_in_context: bool = False
    below_threshold: bool = False

    @property
    def identifier(self) -> str:
        return self.candidate.identifier

    @property
    def raw_score(self) -> float:
        return self.candidate.raw_score

    @property
    def text(self) -> str:
        return self.candidate.payload.text

    def to_source(self, preview_chars: int = 300) -> Dict[str, Any]:
        """转换为来源归因字典"""
        payload = self.candidate.payload
        return {
            "identifier": self.identifier,
            "source": payload.display_source,
            "title": payload.title,
            "combinedScore": round(self.combined_score, 6),
            "rawScore": round(self.raw_score, 6),
            "usedInContext": self.used_in_context,
            "belowThreshold": self.below_threshold,
            "preview": payload.text[:preview_chars],
        }
