"""
Сервис оплаты.
Платёжного шлюза нет: выдаём ссылку-заглушку, подтверждение приходит
из демо-таймера бота (в проде его заменит вебхук провайдера).
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Payment, Plan, Subscription, User, VpnClient
from services.subscription_service import SubscriptionService
from services.vpn_service import VPNService

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationResult:
    """Результат подтверждения платежа"""
    success: bool
    subscription: Optional[Subscription] = None
    plan: Optional[Plan] = None
    vpn_client: Optional[VpnClient] = None
    vpn_error: Optional[str] = None
    error: Optional[str] = None
    already_processed: bool = False


class PaymentService:
    """Платежи за подписку"""

    def __init__(self, session: AsyncSession, payment_base_url: str = "https://pay.example.com/checkout"):
        self.session = session
        self.payment_base_url = payment_base_url

    def build_payment_link(self, payment: Payment) -> str:
        query = urlencode({
            "payment_id": payment.provider_payment_id,
            "amount": payment.amount,
            "currency": payment.currency,
        })
        return f"{self.payment_base_url}?{query}"

    async def create_payment(self, user: User, plan: Plan) -> tuple[Payment, str]:
        """
        Создать платёж в статусе pending.

        Returns:
            (payment, payment_url)
        """
        payment = Payment(
            user_id=user.id,
            plan_id=plan.id,
            amount=plan.price,
            currency="RUB",
            provider="mock",
            provider_payment_id=secrets.token_hex(8),
            status="pending",
        )
        self.session.add(payment)
        await self.session.commit()
        await self.session.refresh(payment)

        logger.info(f"Создан платёж {payment.id} для user_id={user.id}, plan={plan.code}, amount={plan.price}")
        return payment, self.build_payment_link(payment)

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        return await self.session.get(Payment, payment_id)

    async def confirm_payment(
        self,
        payment_id: int,
        vpn_service: VPNService,
        now: Optional[datetime] = None,
    ) -> ConfirmationResult:
        """
        Отметить платёж оплаченным, активировать подписку и выдать VPN.

        Повторное подтверждение уже оплаченного платежа ничего не меняет.
        Ошибка панели не откатывает подписку: доступ можно выдать позже через /config.
        """
        now = now or datetime.utcnow()

        payment = await self.get_payment(payment_id)
        if not payment:
            return ConfirmationResult(success=False, error="Платёж не найден")
        if payment.status == "succeeded":
            return ConfirmationResult(success=True, already_processed=True)
        if payment.status != "pending":
            return ConfirmationResult(success=False, error=f"Платёж в статусе {payment.status}")

        plan = await self.session.get(Plan, payment.plan_id)
        user = await self.session.get(User, payment.user_id)
        if not plan or not user:
            return ConfirmationResult(success=False, error="Тариф или пользователь не найден")

        payment.status = "succeeded"
        payment.paid_at = now
        await self.session.commit()

        subscription = await SubscriptionService(self.session).activate(user.id, plan, now)

        vpn_client, vpn_error = await vpn_service.provision(user, subscription)
        if vpn_error:
            logger.warning(f"Платёж {payment.id} оплачен, но VPN не выдан: {vpn_error}")

        logger.info(f"Платёж {payment.id} обработан, подписка {subscription.id} активирована")
        return ConfirmationResult(
            success=True,
            subscription=subscription,
            plan=plan,
            vpn_client=vpn_client,
            vpn_error=vpn_error,
        )

    async def fail_payment(self, payment_id: int) -> bool:
        payment = await self.get_payment(payment_id)
        if not payment or payment.status != "pending":
            return False
        payment.status = "failed"
        await self.session.commit()
        return True

    async def stats(self) -> dict:
        """Сводка для админки"""
        result = await self.session.execute(
            select(func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.status == "succeeded"
            )
        )
        count, revenue = result.one()
        pending = await self.session.execute(
            select(func.count(Payment.id)).where(Payment.status == "pending")
        )
        return {"succeeded": count, "revenue": revenue, "pending": pending.scalar_one()}
