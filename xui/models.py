"""
Типы данных клиента 3x-ui: результат вызова, клиент инбаунда, отчёт проверки.
"""

import secrets
from dataclasses import dataclass, field
from typing import Any, Optional


# Коды ошибок (транспортные берутся из errno: ECONNREFUSED, EHOSTUNREACH...)
CODE_TIMEOUT = "ETIMEDOUT"
CODE_NOT_FOUND = "ENOTFOUND"
CODE_UNAUTHORIZED = "UNAUTHORIZED"
CODE_AUTH_FAILED = "AUTH_FAILED"
CODE_BAD_RESPONSE = "BAD_RESPONSE"
CODE_PANEL_ERROR = "PANEL_ERROR"

UUID_TEMPLATE = "xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx"


class PanelHTTPError(Exception):
    """Панель ответила HTTP-ошибкой"""

    def __init__(self, status: int, message: str = ""):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class PanelResponseError(Exception):
    """Ответ панели не удалось разобрать"""


@dataclass
class ApiResult:
    """Единый результат операций клиента: {success, message, code?, obj?}"""

    success: bool
    message: str = ""
    code: Optional[str] = None
    obj: Any = None

    @classmethod
    def ok(cls, obj: Any = None, message: str = "") -> "ApiResult":
        return cls(success=True, message=message, obj=obj)

    @classmethod
    def fail(cls, message: str, code: Optional[str] = None) -> "ApiResult":
        return cls(success=False, message=message, code=code)

    def to_dict(self) -> dict:
        """Формат ответа в стиле панели (msg вместо message)"""
        data = {"success": self.success, "msg": self.message}
        if self.code is not None:
            data["code"] = self.code
        if self.obj is not None:
            data["obj"] = self.obj
        return data


def generate_uuid() -> str:
    """
    Случайный UUID формата xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx.

    Идентификатор клиента и есть VPN-ключ, цифры берём
    из CSPRNG (secrets), а не из random.
    """
    chars = []
    for c in UUID_TEMPLATE:
        if c == "x":
            chars.append(format(secrets.randbelow(16), "x"))
        elif c == "y":
            # Вариант RFC 4122: 10xx -> 8, 9, a, b
            chars.append(format(secrets.randbelow(4) | 0x8, "x"))
        else:
            chars.append(c)
    return "".join(chars)


@dataclass
class ClientEntry:
    """Клиент внутри инбаунда"""

    id: str
    email: str
    limit_ip: int = 0
    total_gb: int = 0
    expiry_time: int = 0              # Unix-время в миллисекундах, 0 = бессрочно
    enable: bool = True
    tg_id: str = ""
    sub_id: str = ""
    flow: Optional[str] = None        # Только для VLESS

    def to_payload(self) -> dict:
        """JSON в формате панели (camelCase)"""
        payload = {
            "id": self.id,
            "email": self.email,
            "limitIp": self.limit_ip,
            "totalGB": self.total_gb,
            "expiryTime": self.expiry_time,
            "enable": self.enable,
            "tgId": self.tg_id,
            "subId": self.sub_id,
        }
        if self.flow is not None:
            payload["flow"] = self.flow
        return payload


@dataclass
class ProbeReport:
    """Результат диагностики панели (HEAD + логин)"""

    success: bool
    step: str                         # connectivity / login / done
    message: str
    code: Optional[str] = None
    status: Optional[int] = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "step": self.step,
            "message": self.message,
            "code": self.code,
            "status": self.status,
            "details": self.details,
        }
