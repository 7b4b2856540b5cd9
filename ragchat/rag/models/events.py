"""
回答流事件模型

内部统一的事件序列：零个或多个 Delta，之后恰好一个 SourcesFinal。
生成失败时以 StreamError 结束，不再发送 SourcesFinal。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Union


@dataclass(frozen=True)
class Delta:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "delta", "text": self.text}


@dataclass(frozen=True)
class SourcesFinal:
    sources: List[Dict[str, Any]] = field(default_factory=list)
    top_k_used: int = 0
    threshold_used: float = 0.0
    flags: Dict[str, bool] = field(default_factory=dict)
    debug: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "sources",
            "sources": self.sources,
            "topKUsed": self.top_k_used,
            "thresholdUsed": self.threshold_used,
            "flags": self.flags,
            "debug": self.debug,
        }


@dataclass(frozen=True)
class StreamError:
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "error", "message": self.message}


AnswerStreamEvent = Union[Delta, SourcesFinal, StreamError]
