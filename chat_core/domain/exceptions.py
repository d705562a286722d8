"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 UI 层做统一捕获与用户提示（按异常类型区分凭证/网络/限流等）。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、model_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class UnknownModel(BusinessError):
    """模型 ID 不在 ModelRegistry 中。"""


class UnsupportedModel(BusinessError):
    """模型已注册，但其所属 Provider 没有可用实现。"""


class InvalidCredential(BusinessError):
    """API Key 缺失或被 Provider 拒绝（401/403）。"""


class RateLimited(BusinessError):
    """Provider 限流错误，由调用方决定是否重试/退避。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class UnexpectedResponse(BusinessError):
    """Provider 返回了无法解析或缺少内容的数据。"""


class ApiError(BusinessError):
    """第三方 API 返回其他非 2xx 错误时抛出。"""


class ContextTooLarge(BusinessError):
    """裁剪后的上下文为空，且调用方选择将其视为致命错误。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
