"""
Клиент панели 3x-ui.

Компоненты:
- XuiApi: авторизованная сессия + операции с инбаундами
- PanelSettings / SessionState: настройки и неизменяемое состояние сессии
- ApiResult: единый формат результата
"""

from .config import PanelSettings, SessionState, TOKEN_LIFETIME, TOKEN_SAFETY_MARGIN
from .models import ApiResult, ClientEntry, ProbeReport, generate_uuid
from .client import XuiApi

__all__ = [
    "PanelSettings",
    "SessionState",
    "TOKEN_LIFETIME",
    "TOKEN_SAFETY_MARGIN",
    "ApiResult",
    "ClientEntry",
    "ProbeReport",
    "generate_uuid",
    "XuiApi",
]
