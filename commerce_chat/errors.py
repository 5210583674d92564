"""Exception taxonomy for the assistant core and its external collaborators.

Core errors (SessionNotFound, UnknownFunction, HandlerExecutionError,
ClassificationServiceError) are raised inside the orchestrator stack and are
normalised at known boundaries. ServiceError and its subclasses are raised by
the business services; handlers catch them and surface ``user_message``.
"""

from __future__ import annotations

from typing import Optional


class ChatbotError(Exception):
    """Base class for assistant core errors."""


class SessionNotFound(ChatbotError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class UnknownFunction(ChatbotError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown function: {name}")
        self.name = name


class HandlerExecutionError(ChatbotError):
    """Wraps an exception that escaped a handler at the dispatch boundary."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(str(cause) or cause.__class__.__name__)
        self.name = name
        self.cause = cause


class ClassificationServiceError(ChatbotError):
    """The language model call failed (network, auth, timeout, SDK error)."""


class ServiceError(Exception):
    """Failure raised by an external business service."""

    default_message = "Đã có lỗi xảy ra."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class NotFoundError(ServiceError):
    default_message = "Không tìm thấy dữ liệu yêu cầu."


class PermissionDeniedError(ServiceError):
    default_message = "Bạn không có quyền truy cập."


class InsufficientStockError(ServiceError):
    default_message = "Sản phẩm không đủ số lượng trong kho."


class InvalidOperationError(ServiceError):
    default_message = "Thao tác không hợp lệ."


class VoucherError(ServiceError):
    default_message = "Mã giảm giá không hợp lệ."


class VoucherNotFound(VoucherError):
    default_message = "Mã giảm giá không tồn tại."


class VoucherInactive(VoucherError):
    default_message = "Mã giảm giá chưa bắt đầu hoặc đã hết hạn."


class VoucherUsageExceeded(VoucherError):
    default_message = "Mã giảm giá đã hết lượt sử dụng."


class VoucherMinOrderNotMet(VoucherError):
    default_message = "Đơn hàng chưa đạt giá trị tối thiểu để dùng mã này."


class VoucherNotApplicable(VoucherError):
    default_message = "Mã giảm giá không áp dụng cho sản phẩm trong giỏ hàng."
