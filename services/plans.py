"""
Тарифные планы VPN.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Plan


@dataclass
class PlanDefaults:
    """Тариф по умолчанию (заливается в БД при первом запуске)"""
    code: str
    name: str
    price: int  # В рублях
    duration_days: int
    traffic_gb: int  # 0 = безлимит
    device_limit: int  # Одновременных устройств (limitIp)


# Конфигурация тарифов
DEFAULT_PLANS = [
    PlanDefaults(code="basic", name="Базовый", price=199, duration_days=30, traffic_gb=100, device_limit=1),
    PlanDefaults(code="standard", name="Стандарт", price=399, duration_days=30, traffic_gb=300, device_limit=3),
    PlanDefaults(code="pro", name="Про", price=999, duration_days=90, traffic_gb=0, device_limit=5),
]


def format_traffic(traffic_gb: int) -> str:
    """100 -> '100 ГБ', 0 -> 'безлимит'"""
    if not traffic_gb:
        return "безлимит"
    return f"{traffic_gb} ГБ"


def format_plan(plan: Plan) -> str:
    """Строка для кнопки: 'Базовый - 199₽ (100 ГБ / 30 дн.)'"""
    return f"{plan.name} - {plan.price}₽ ({format_traffic(plan.traffic_gb)} / {plan.duration_days} дн.)"


class PlanService:
    """Чтение тарифов из БД"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_plans(self) -> list[Plan]:
        result = await self.session.execute(
            select(Plan).where(Plan.is_active == True).order_by(Plan.price)  # noqa: E712
        )
        return list(result.scalars().all())

    async def get_plan(self, plan_id: int) -> Optional[Plan]:
        return await self.session.get(Plan, plan_id)

    async def seed_default_plans(self) -> list[str]:
        """Добавить недостающие тарифы по умолчанию. Возвращает коды созданных."""
        result = await self.session.execute(select(Plan.code))
        existing = set(result.scalars().all())

        created = []
        for defaults in DEFAULT_PLANS:
            if defaults.code in existing:
                continue
            self.session.add(Plan(
                code=defaults.code,
                name=defaults.name,
                price=defaults.price,
                duration_days=defaults.duration_days,
                traffic_gb=defaults.traffic_gb,
                device_limit=defaults.device_limit,
            ))
            created.append(defaults.code)

        if created:
            await self.session.commit()
        return created
