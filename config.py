"""
Конфигурация приложения.
Все секреты загружаются из .env файла.
"""
import os
import logging
from dotenv import load_dotenv

# Загружаем переменные из .env
load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """Основная конфигурация"""

    # Telegram
    BOT_TOKEN: str = os.getenv("BOT_TOKEN", "")
    OWNER_TELEGRAM_ID: int = int(os.getenv("OWNER_TELEGRAM_ID", "0") or "0")
    SUPPORT_CONTACT: str = os.getenv("SUPPORT_CONTACT", "@support")

    # База данных
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///vpn_bot.db")

    # Панель 3x-ui
    XUI_PANEL_URL: str = os.getenv("XUI_PANEL_URL", "http://localhost:9001")
    XUI_USERNAME: str = os.getenv("XUI_USERNAME", "admin")
    XUI_PASSWORD: str = os.getenv("XUI_PASSWORD", "admin")
    XUI_INBOUND_ID: int = int(os.getenv("XUI_INBOUND_ID", "0") or "0")  # 0 = первый инбаунд панели

    # Админ-панель
    ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "")
    ADMIN_SESSION_SECRET: str = os.getenv("ADMIN_SESSION_SECRET", "")
    ADMIN_PANEL_PORT: int = int(os.getenv("ADMIN_PANEL_PORT", "8082") or "8082")

    # Оплата (заглушка платёжного шлюза)
    PAYMENT_BASE_URL: str = os.getenv("PAYMENT_BASE_URL", "https://pay.example.com/checkout")
    PAYMENT_AUTO_CONFIRM_SECONDS: int = int(os.getenv("PAYMENT_AUTO_CONFIRM_SECONDS", "10") or "0")

    @classmethod
    def validate(cls) -> bool:
        """Проверка обязательных переменных"""
        errors = []

        if not cls.BOT_TOKEN:
            errors.append("BOT_TOKEN не установлен")
        if not cls.XUI_PANEL_URL:
            errors.append("XUI_PANEL_URL не установлен")

        if errors:
            for error in errors:
                logger.error(f"❌ Ошибка конфигурации: {error}")
            return False

        if not cls.ADMIN_PASSWORD:
            logger.warning("ADMIN_PASSWORD не установлен: вход в админ-панель невозможен")

        logger.info("✅ Конфигурация загружена успешно")
        return True


# Создаём экземпляр конфигурации
config = Config()
