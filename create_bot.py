"""
Инициализация бота и диспетчера.
"""
import logging
from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage

from config import config
from xui import XuiApi, PanelSettings

# Создаем хранилище FSM (состояние диалогов живёт только в памяти)
storage = MemoryStorage()

# Создаем бота и диспетчер
bot = Bot(token=config.BOT_TOKEN)
dp = Dispatcher(storage=storage)

# Клиент панели передаётся хендлерам через workflow data диспетчера
dp["xui_api"] = XuiApi(
    PanelSettings(config.XUI_PANEL_URL, config.XUI_USERNAME, config.XUI_PASSWORD)
)

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
