"""错误类型

- ValidationError: 用药提醒/记录等数据格式非法，写入被拒绝，不会部分生效
- StorageError: 底层存储读写失败(数据损坏、写入失败等)

"找不到对应 ID" 不是异常，相关操作以布尔值返回。
"""

__all__ = ["ReminderError", "ValidationError", "StorageError"]


class ReminderError(Exception):
    """所有业务异常的基类"""


class ValidationError(ReminderError):
    def __init__(self, message: str, errors: list | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class StorageError(ReminderError):
    pass
