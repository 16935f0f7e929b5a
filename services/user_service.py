"""
Сервис пользователей: поиск, создание, регистрация по email.
"""
import re
import logging
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import User

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str) -> bool:
    return bool(email and EMAIL_RE.match(email))


class UserService:
    """Управление пользователями бота"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(User.telegram_id == telegram_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_user(self, telegram_id: int, username: str = None, first_name: str = None) -> tuple[User, bool]:
        """
        Получить или создать пользователя.
        Возвращает (user, is_new), is_new=True если пользователь только что создан.
        """
        user = await self.get_by_telegram_id(telegram_id)
        if user:
            # Обновляем имя если изменилось
            if first_name and user.first_name != first_name:
                user.first_name = first_name
                await self.session.commit()
            return user, False

        user = User(telegram_id=telegram_id, username=username, first_name=first_name)
        self.session.add(user)
        try:
            await self.session.commit()
            await self.session.refresh(user)
            return user, True
        except IntegrityError:
            await self.session.rollback()
            # Пользователь уже создан параллельным апдейтом
            return await self.get_by_telegram_id(telegram_id), False

    async def register(self, telegram_id: int, email: str, username: str = None) -> tuple[Optional[User], Optional[str]]:
        """
        Регистрация: привязать email к пользователю.
        Возвращает (user, error).
        """
        email = (email or "").strip().lower()
        if not is_valid_email(email):
            return None, "Введите корректный email"

        user, _ = await self.get_or_create_user(telegram_id, username=username)
        if user.is_registered:
            return user, "Вы уже зарегистрированы"

        taken = await self.session.execute(select(User.id).where(User.email == email))
        if taken.scalar_one_or_none() is not None:
            return None, "Этот email уже используется"

        user.email = email
        if username and not user.username:
            user.username = username
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return None, "Этот email уже используется"

        logger.info(f"Пользователь {telegram_id} зарегистрирован")
        return user, None

    async def count_users(self) -> int:
        result = await self.session.execute(select(func.count(User.id)))
        return result.scalar_one()

    async def list_users(self, limit: int = 100) -> list[User]:
        result = await self.session.execute(
            select(User).order_by(User.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
