"""
Сервис подписок: активная подписка, активация/продление, статус.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Subscription, Plan
from services.plans import format_traffic

logger = logging.getLogger(__name__)


def remaining_days(subscription: Subscription, now: Optional[datetime] = None) -> int:
    """Сколько дней осталось (округление вверх, как в статусе бота)"""
    now = now or datetime.utcnow()
    seconds = (subscription.expires_at - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def format_status(subscription: Subscription, now: Optional[datetime] = None) -> str:
    """Текст для /status"""
    used = subscription.used_traffic_gb or 0.0
    total = subscription.traffic_limit_gb
    if total:
        left = max(0.0, total - used)
        traffic = f"{used:.2f} ГБ / {total} ГБ (осталось {left:.2f} ГБ)"
    else:
        traffic = f"{used:.2f} ГБ / {format_traffic(total)}"

    return (
        f"📊 *Статус подписки*\n\n"
        f"Тариф: {subscription.plan_name}\n"
        f"Статус: активна\n"
        f"Трафик: {traffic}\n"
        f"Истекает через: {remaining_days(subscription, now)} дн. "
        f"({subscription.expires_at.strftime('%d.%m.%Y')})"
    )


class SubscriptionService:
    """Подписки пользователей"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_subscription(self, user_id: int, now: Optional[datetime] = None) -> Optional[Subscription]:
        """Активная неистёкшая подписка с самой поздней датой окончания"""
        now = now or datetime.utcnow()
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status == "active",
                Subscription.expires_at > now,
            ).order_by(Subscription.expires_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def activate(self, user_id: int, plan: Plan, now: Optional[datetime] = None) -> Subscription:
        """
        Активировать тариф.
        Если подписка уже есть, продлеваем её на срок тарифа.
        """
        now = now or datetime.utcnow()
        duration = timedelta(days=plan.duration_days)

        current = await self.get_active_subscription(user_id, now)
        if current:
            current.expires_at = current.expires_at + duration
            current.plan_id = plan.id
            current.plan_name = plan.name
            current.traffic_limit_gb = plan.traffic_gb
            await self.session.commit()
            logger.info(f"Подписка {current.id} продлена до {current.expires_at}")
            return current

        subscription = Subscription(
            user_id=user_id,
            plan_id=plan.id,
            plan_name=plan.name,
            status="active",
            traffic_limit_gb=plan.traffic_gb,
            used_traffic_gb=0.0,
            started_at=now,
            expires_at=now + duration,
        )
        self.session.add(subscription)
        await self.session.commit()
        await self.session.refresh(subscription)
        logger.info(f"Создана подписка {subscription.id} для user_id={user_id} ({plan.code})")
        return subscription

    async def count_active(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        result = await self.session.execute(
            select(func.count(Subscription.id)).where(
                Subscription.status == "active",
                Subscription.expires_at > now,
            )
        )
        return result.scalar_one()
