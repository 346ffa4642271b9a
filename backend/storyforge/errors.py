"""领域错误分类：NotFound / Validation / Conflict / Internal（快速失败）。"""

from __future__ import annotations


class StoryforgeError(RuntimeError):
    """所有领域错误的基类，由调用方（HTTP 层）映射为传输层响应。"""


class NotFoundError(StoryforgeError, LookupError):
    """引用的节点 / 法术 / 用户不存在。"""


class ValidationError(StoryforgeError, ValueError):
    """输入不合法：配方列表格式错误、数量为负等。"""


class ConflictError(StoryforgeError):
    """唯一约束冲突，仅在内部使用，由 CraftingResolver 通过重读消化。"""


class InternalError(StoryforgeError):
    """存储失败、生成失败或序列化失败。"""


class ProviderError(InternalError):
    """外部生成服务失败（超时、响应非法等）。"""


class TransactionStateError(RuntimeError):
    """在已提交 / 已回滚的事务上继续操作：编程错误，不属于领域错误。"""
