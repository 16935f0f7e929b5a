"""
Pydantic схемы для API админ-панели.
"""
from typing import Optional
from pydantic import BaseModel, field_validator


class ClientCreate(BaseModel):
    """Новый клиент в инбаунде"""
    inbound_id: int
    email: str
    limit_ip: int = 0
    expiry_days: int = 0  # 0 = бессрочно

    @field_validator("email")
    @classmethod
    def email_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Email клиента обязателен")
        if len(v) > 255:
            raise ValueError("Email слишком длинный")
        return v

    @field_validator("limit_ip", "expiry_days")
    @classmethod
    def not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Значение не может быть отрицательным")
        return v


class PanelSettingsUpdate(BaseModel):
    """Новые настройки подключения к панели"""
    url: str
    username: str
    password: str

    @field_validator("url")
    @classmethod
    def url_valid(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL должен начинаться с http:// или https://")
        return v


class ConnectionTest(BaseModel):
    """Проверка подключения: пустые поля берутся из текущих настроек"""
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class ServerSync(BaseModel):
    """Импорт серверов из инбаундов панели"""
    address: str  # Адрес, который увидит клиент в ссылке
    location: str = ""

    @field_validator("address")
    @classmethod
    def address_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Адрес сервера обязателен")
        return v
