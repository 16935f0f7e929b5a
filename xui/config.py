"""
Настройки подключения к панели 3x-ui и состояние сессии клиента.

Состояние хранится как неизменяемое значение: любая смена настроек
или токена создаёт новый SessionState, а не правит старый.
"""

import os
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)


# Панель выдаёт токен на 24 часа, считаем его живым только 12
TOKEN_LIFETIME = timedelta(hours=12)

# Токен, истекающий в ближайшие 10 секунд, уже не используем
TOKEN_SAFETY_MARGIN = timedelta(seconds=10)

DEFAULT_PANEL_URL = "http://localhost:9001"
DEFAULT_PANEL_USERNAME = "admin"
DEFAULT_PANEL_PASSWORD = "admin"


@dataclass(frozen=True)
class PanelSettings:
    """Адрес и учётные данные панели"""

    url: str
    username: str
    password: str

    def __post_init__(self):
        # Без завершающего слэша, чтобы пути склеивались предсказуемо
        object.__setattr__(self, "url", (self.url or "").rstrip("/"))

    @classmethod
    def from_env(cls) -> "PanelSettings":
        """
        Загрузить настройки из переменных окружения.

        Переменные:
        - XUI_PANEL_URL: адрес панели
        - XUI_USERNAME: логин администратора
        - XUI_PASSWORD: пароль администратора
        """
        return cls(
            url=os.getenv("XUI_PANEL_URL", DEFAULT_PANEL_URL) or DEFAULT_PANEL_URL,
            username=os.getenv("XUI_USERNAME", DEFAULT_PANEL_USERNAME) or DEFAULT_PANEL_USERNAME,
            password=os.getenv("XUI_PASSWORD", DEFAULT_PANEL_PASSWORD) or DEFAULT_PANEL_PASSWORD,
        )

    def merged(
        self,
        url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> "PanelSettings":
        """Подставить переданные значения, пустые берутся из текущих"""
        return PanelSettings(
            url=url or self.url,
            username=username or self.username,
            password=password or self.password,
        )

    def to_dict(self) -> dict:
        """Сериализация для API (без пароля)"""
        return {"url": self.url, "username": self.username}


@dataclass(frozen=True)
class SessionState:
    """Настройки + закэшированный токен и время его истечения"""

    settings: PanelSettings
    token: Optional[str] = None
    token_expires_at: Optional[datetime] = None

    def is_token_valid(self, now: datetime) -> bool:
        """Токен есть, срок известен и истекает позже чем через 10 секунд"""
        if not self.token or self.token_expires_at is None:
            return False
        return self.token_expires_at > now + TOKEN_SAFETY_MARGIN

    def with_settings(self, settings: PanelSettings) -> "SessionState":
        """Новые настройки: старый токен для них недействителен"""
        return SessionState(settings=settings)

    def with_token(self, token: str, now: datetime) -> "SessionState":
        return replace(self, token=token, token_expires_at=now + TOKEN_LIFETIME)

    def without_token(self) -> "SessionState":
        return replace(self, token=None, token_expires_at=None)
