"""
异常分类

只有 ConfigurationError 与 GenerationError 会作为失败返回给调用方，
其余异常在各自的层内被吸收并降级处理。
"""


class RagChatError(Exception):
    """服务内所有业务异常的基类"""


class ConfigurationError(RagChatError):
    """缺少必要的凭据或配置（致命，检索开始前即失败）"""


class RetrievalError(RagChatError):
    """向量库或 Embedding 调用失败（降级为无上下文）"""


class ExpansionError(RagChatError):
    """HyDE / CRAG 子步骤失败（回退到更简单的策略）"""


class GenerationError(RagChatError):
    """回答生成失败（对本次请求致命）"""


class PersistenceError(RagChatError):
    """会话存储读写失败（降级为临时会话）"""
