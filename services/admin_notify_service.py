"""
Сервис уведомлений администратора.
Отправляет сообщения владельцу при важных событиях.
"""
import html
import logging
from typing import Optional

from aiogram import Bot

logger = logging.getLogger(__name__)


class AdminNotifyService:
    """Отправка уведомлений администратору"""

    def __init__(self, bot: Bot, owner_id: int):
        self.bot = bot
        self.owner_id = owner_id

    async def notify(self, message: str):
        """Отправить уведомление владельцу"""
        if not self.owner_id:
            logger.warning("OWNER_TELEGRAM_ID not set, skipping notification")
            return

        try:
            await self.bot.send_message(
                self.owner_id,
                message,
                parse_mode="HTML"
            )
        except Exception as e:
            logger.error(f"Failed to send admin notification: {e}")

    async def notify_new_user(self, telegram_id: int, email: str, username: Optional[str] = None):
        """Уведомление о регистрации"""
        display_name = f"@{username}" if username else f"ID: {telegram_id}"

        await self.notify(
            f"👤 <b>Новый пользователь</b>\n\n"
            f"Имя: {html.escape(display_name)}\n"
            f"Email: {html.escape(email)}\n"
            f"ID: <code>{telegram_id}</code>"
        )

    async def notify_payment(self, telegram_id: int, plan_name: str, amount: int, vpn_error: Optional[str] = None):
        """Уведомление об оплате"""
        vpn_text = "✅ VPN выдан" if not vpn_error else f"⚠️ VPN не выдан: {html.escape(vpn_error)}"

        await self.notify(
            f"💰 <b>Оплата</b>\n\n"
            f"ID: <code>{telegram_id}</code>\n"
            f"Тариф: {html.escape(plan_name)}\n"
            f"Сумма: {amount}₽\n"
            f"{vpn_text}"
        )
