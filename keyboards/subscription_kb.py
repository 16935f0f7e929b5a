"""
Клавиатуры для подписки и серверов.
"""
from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from services.plans import format_plan


def plans_keyboard(plans: list) -> InlineKeyboardMarkup:
    """Выбор тарифа: по кнопке на план"""
    buttons = [
        [InlineKeyboardButton(text=format_plan(plan), callback_data=f"plan:{plan.id}")]
        for plan in plans
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def servers_keyboard(servers: list) -> InlineKeyboardMarkup:
    """Выбор сервера для получения конфигурации"""
    buttons = []
    for server in servers:
        label = f"🌍 {server.name}"
        if server.location:
            label += f" ({server.location})"
        buttons.append([InlineKeyboardButton(text=label, callback_data=f"server:{server.id}")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def parse_callback_id(data: str, prefix: str):
    """'plan:3' -> 3; чужой префикс или мусор -> None"""
    if not data or not data.startswith(f"{prefix}:"):
        return None
    try:
        return int(data.split(":", 1)[1])
    except ValueError:
        return None
