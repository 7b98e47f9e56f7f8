"""
Payment specific codes and VNPay response-code tables.

The tables are plain data: adding a new gateway code never requires
touching reconciliation logic.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003


VNPAY_SUCCESS_CODE = "00"

# vnp_ResponseCode -> customer-facing message per locale
VNPAY_RESPONSE_MESSAGES: dict[str, dict[str, str]] = {
    "00": {
        "vn": "Giao dịch thành công",
        "en": "Transaction successful",
    },
    "07": {
        "vn": "Trừ tiền thành công. Giao dịch bị nghi ngờ (liên quan tới lừa đảo, giao dịch bất thường)",
        "en": "Amount deducted. Transaction flagged as suspicious",
    },
    "09": {
        "vn": "Thẻ/Tài khoản của khách hàng chưa đăng ký dịch vụ InternetBanking tại ngân hàng",
        "en": "Card/account is not registered for internet banking",
    },
    "10": {
        "vn": "Khách hàng xác thực thông tin thẻ/tài khoản không đúng quá 3 lần",
        "en": "Card/account verification failed more than 3 times",
    },
    "11": {
        "vn": "Đã hết hạn chờ thanh toán. Xin quý khách vui lòng thực hiện lại giao dịch",
        "en": "Payment session expired, please try again",
    },
    "12": {
        "vn": "Thẻ/Tài khoản của khách hàng bị khóa",
        "en": "Card/account is locked",
    },
    "13": {
        "vn": "Quý khách nhập sai mật khẩu xác thực giao dịch (OTP). Xin quý khách vui lòng thực hiện lại giao dịch",
        "en": "Incorrect OTP, please try again",
    },
    "24": {
        "vn": "Khách hàng hủy giao dịch",
        "en": "Transaction cancelled by customer",
    },
    "51": {
        "vn": "Tài khoản của quý khách không đủ số dư để thực hiện giao dịch",
        "en": "Insufficient account balance",
    },
    "65": {
        "vn": "Tài khoản của Quý khách đã vượt quá hạn mức giao dịch trong ngày",
        "en": "Daily transaction limit exceeded",
    },
    "75": {
        "vn": "Ngân hàng thanh toán đang bảo trì",
        "en": "Bank is under maintenance",
    },
    "79": {
        "vn": "KH nhập sai mật khẩu thanh toán quá số lần quy định",
        "en": "Payment password entered incorrectly too many times",
    },
    "99": {
        "vn": "Các lỗi khác (lỗi còn lại, không có trong danh sách mã lỗi đã liệt kê)",
        "en": "Other error",
    },
}

_UNKNOWN_CODE_MESSAGES = {
    "vn": "Giao dịch không thành công. Mã lỗi: {code}",
    "en": "Transaction failed. Error code: {code}",
}


def describe_response_code(code: str | None, locale: str = "vn") -> str:
    """Customer-facing message for a gateway response code."""
    lang = "en" if (locale or "").lower().startswith("en") else "vn"
    if not code:
        return _UNKNOWN_CODE_MESSAGES[lang].format(code="-")
    entry = VNPAY_RESPONSE_MESSAGES.get(code)
    if entry is None:
        return _UNKNOWN_CODE_MESSAGES[lang].format(code=code)
    return entry[lang]


# IPN acknowledgement codes the gateway expects back from the merchant
IPN_ACK_CONFIRMED = ("00", "Confirm Success")
IPN_ACK_ORDER_NOT_FOUND = ("01", "Order not found")
IPN_ACK_ALREADY_CONFIRMED = ("02", "Order already confirmed")
IPN_ACK_INVALID_AMOUNT = ("04", "Invalid amount")
IPN_ACK_INVALID_SIGNATURE = ("97", "Invalid signature")
IPN_ACK_UNKNOWN_ERROR = ("99", "Unknown error")
