"""
TaskFlow 异常定义模块。

定义系统中所有自定义异常的层次结构：
- TaskflowError: 基类，所有已知错误
- ConfigError: 配置文件错误
- ValidationError: 输入或记录不合法 (带出错字段)
- NotFoundError: 条目或用户不存在
- ConflictError: 并发冲突 (如条目已被其他请求解决)
- StoreError: 存储层读写失败
"""
from typing import Any, Optional


class TaskflowError(Exception):
    """TaskFlow 基础异常类。

    所有系统内已知错误都继承自此类。
    捕获此类可以处理所有预期的错误情况。
    """

    def __init__(self, message: str, hint: Optional[str] = None):
        """
        Args:
            message: 错误描述
            hint: 对调用方的操作建议
        """
        super().__init__(message)
        self.message = message
        self.hint = hint

    def get_user_message(self) -> str:
        """返回用户友好的错误消息。"""
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, "hint": self.hint}


class ConfigError(TaskflowError):
    """配置文件错误。

    当配置文件缺失、格式错误或内容非法时抛出。
    """

    def __init__(self, message: str, config_path: Optional[str] = None):
        hint = f"Check config file: {config_path}" if config_path else "Check config file format"
        super().__init__(message, hint)
        self.config_path = config_path


class ValidationError(TaskflowError):
    """输入校验失败。

    在任何写操作之前抛出，field 指出具体出错字段。
    """

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        hint = f"Invalid field: {field}" if field else None
        super().__init__(message, hint)
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class NotFoundError(TaskflowError):
    """目标条目或用户不存在。不重试。"""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(TaskflowError):
    """并发冲突。

    写入前的前置条件复查失败时抛出（例如 rescue 时条目已被其他调用方解决），
    拒绝写入而不是静默覆盖。
    """

    def __init__(self, message: str, item_id: Any = None):
        super().__init__(message, hint="Reload the item and retry if still applicable")
        self.item_id = item_id


class StoreError(TaskflowError):
    """存储层读写失败。"""

    def __init__(self, message: str, path: Optional[str] = None):
        hint = f"Check data file: {path}" if path else None
        super().__init__(message, hint)
        self.path = path
