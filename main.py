"""
Точка входа приложения.
Telegram-бот для продажи VPN + админ-панель.
"""
import asyncio
import logging
import sys
import os
import fcntl

from config import config

# Путь к PID-файлу
PID_FILE = "/tmp/vpn_bot.pid"

# Сервер админ-панели
_admin_server = None


def check_already_running():
    """Проверка, что бот уже не запущен"""
    try:
        # Пробуем получить эксклюзивную блокировку файла
        pid_file = open(PID_FILE, 'w')
        fcntl.flock(pid_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        # Записываем свой PID
        pid_file.write(str(os.getpid()))
        pid_file.flush()
        # Не закрываем файл, держим блокировку до конца работы
        return pid_file  # Возвращаем, чтобы не собрался garbage collector
    except (IOError, OSError):
        print("❌ Бот уже запущен! Завершаю дубль.")
        sys.exit(1)


from create_bot import dp, bot
from database import init_db, async_session
from handlers import user
from handlers import subscription

logger = logging.getLogger(__name__)


async def run_admin_server():
    """Запустить FastAPI админ-панель"""
    import uvicorn
    from admin_panel import create_app

    admin_app = create_app(
        xui_api=dp["xui_api"],
        session_factory=async_session,
        admin_password=config.ADMIN_PASSWORD,
        session_secret=config.ADMIN_SESSION_SECRET,
    )
    config_uvicorn = uvicorn.Config(
        admin_app,
        host="0.0.0.0",
        port=config.ADMIN_PANEL_PORT,
        log_level="warning",  # Меньше логов
    )
    server = uvicorn.Server(config_uvicorn)
    await server.serve()


async def on_startup():
    """Действия при запуске бота"""
    global _admin_server

    # Проверяем конфигурацию
    if not config.validate():
        raise ValueError("Ошибка конфигурации. Проверьте .env файл.")

    try:
        await bot.delete_webhook(drop_pending_updates=True)
        logger.info("🔌 Webhook удалён")
    except Exception as e:
        logger.warning(f"⚠️ Не удалось удалить webhook: {e}")

    # Инициализируем базу данных
    await init_db()

    # Проверяем панель заранее, чтобы ошибка настроек была видна в логах сразу
    login_result = await dp["xui_api"].login()
    if login_result.success:
        logger.info("🔐 Панель 3x-ui доступна")
    else:
        logger.warning(f"⚠️ Панель 3x-ui недоступна: {login_result.message} ({login_result.code})")

    # Запускаем админ-панель
    _admin_server = asyncio.create_task(run_admin_server())
    logger.info(f"🛠 Админ-панель запущена на порту {config.ADMIN_PANEL_PORT}")

    logger.info("🚀 Бот успешно запущен!")


async def on_shutdown():
    """Действия при остановке бота"""
    if _admin_server:
        _admin_server.cancel()
        logger.info("🛠 Админ-панель остановлена")

    logger.info("👋 Бот остановлен")


async def main():
    """Главная функция"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    # Регистрация обработчиков
    dp.include_router(subscription.router)
    user.register_handlers_user(dp)

    # Запуск
    await on_startup()

    try:
        logger.info("▶️ Запуск polling...")
        await dp.start_polling(
            bot,
            skip_updates=True,
            handle_signals=True,  # Graceful shutdown по Ctrl+C
        )
    finally:
        await on_shutdown()


if __name__ == "__main__":
    # Проверяем, что бот не запущен
    _pid_lock = check_already_running()
    asyncio.run(main())
