"""
Тесты для сервисов: пользователи, тарифы, подписки, оплата, выдача VPN
"""
import base64
import json
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, func

from database.models import Server, Subscription, VpnClient
from services.payment_service import PaymentService
from services.plans import PlanService, format_plan, format_traffic
from services.subscription_service import SubscriptionService, format_status, remaining_days
from services.user_service import UserService, is_valid_email
from services.vpn_service import VPNService, build_config_link, to_expiry_ms


NOW = datetime(2025, 1, 1, 12, 0)


class TestUserService:
    """Тесты регистрации"""

    @pytest.mark.asyncio
    async def test_register_new_user(self, session):
        user, error = await UserService(session).register(111, "  New@Example.com ", username="new")
        assert error is None
        assert user.email == "new@example.com"
        assert user.is_registered is True
        assert user.username == "new"

    @pytest.mark.asyncio
    async def test_register_invalid_email(self, session):
        user, error = await UserService(session).register(111, "not-an-email")
        assert user is None
        assert error == "Введите корректный email"

    @pytest.mark.asyncio
    async def test_register_twice(self, session, test_user):
        user, error = await UserService(session).register(test_user.telegram_id, "other@example.com")
        assert error == "Вы уже зарегистрированы"
        assert user.email == "test@example.com"

    @pytest.mark.asyncio
    async def test_register_email_taken(self, session, test_user):
        user, error = await UserService(session).register(222, "test@example.com")
        assert user is None
        assert error == "Этот email уже используется"

    @pytest.mark.asyncio
    async def test_get_or_create_user(self, session):
        service = UserService(session)
        user, is_new = await service.get_or_create_user(333, "u", "First")
        again, is_new_again = await service.get_or_create_user(333, "u", "Renamed")
        assert is_new is True
        assert is_new_again is False
        assert again.id == user.id
        assert again.first_name == "Renamed"
        assert await service.count_users() == 1
        assert [u.telegram_id for u in await service.list_users()] == [333]

    def test_email_validation(self):
        assert is_valid_email("a@b.co")
        assert not is_valid_email("a@b")
        assert not is_valid_email("a b@c.d")
        assert not is_valid_email("")


class TestPlans:
    """Тесты тарифов"""

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, session):
        service = PlanService(session)
        assert await service.seed_default_plans() == ["basic", "standard", "pro"]
        assert await service.seed_default_plans() == []
        assert len(await service.get_active_plans()) == 3

    @pytest.mark.asyncio
    async def test_plans_sorted_by_price(self, session, plans):
        active = await PlanService(session).get_active_plans()
        assert [p.code for p in active] == ["basic", "standard", "pro"]

    @pytest.mark.asyncio
    async def test_format_plan(self, plans):
        assert format_plan(plans["basic"]) == "Базовый - 199₽ (100 ГБ / 30 дн.)"
        assert format_plan(plans["pro"]) == "Про - 999₽ (безлимит / 90 дн.)"

    def test_format_traffic(self):
        assert format_traffic(0) == "безлимит"
        assert format_traffic(300) == "300 ГБ"


class TestSubscriptionService:
    """Тесты активации и продления"""

    @pytest.mark.asyncio
    async def test_activate_new(self, session, test_user, plans):
        sub = await SubscriptionService(session).activate(test_user.id, plans["basic"], NOW)
        assert sub.status == "active"
        assert sub.plan_name == "Базовый"
        assert sub.traffic_limit_gb == 100
        assert sub.expires_at == NOW + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_activate_extends_existing(self, session, test_user, plans):
        """Продление добавляет срок к текущей дате окончания"""
        service = SubscriptionService(session)
        first = await service.activate(test_user.id, plans["basic"], NOW)
        second = await service.activate(test_user.id, plans["pro"], NOW + timedelta(days=10))

        assert second.id == first.id
        assert second.expires_at == NOW + timedelta(days=30 + 90)
        assert second.plan_name == "Про"
        count = await session.execute(select(func.count(Subscription.id)))
        assert count.scalar_one() == 1

    @pytest.mark.asyncio
    async def test_expired_subscription_not_active(self, session, test_user, plans):
        service = SubscriptionService(session)
        await service.activate(test_user.id, plans["basic"], NOW)
        assert await service.get_active_subscription(test_user.id, NOW + timedelta(days=29)) is not None
        assert await service.get_active_subscription(test_user.id, NOW + timedelta(days=31)) is None
        assert await service.count_active(NOW + timedelta(days=31)) == 0

    @pytest.mark.asyncio
    async def test_activate_after_expiry_starts_fresh(self, session, test_user, plans):
        service = SubscriptionService(session)
        old = await service.activate(test_user.id, plans["basic"], NOW)
        later = NOW + timedelta(days=40)
        new = await service.activate(test_user.id, plans["basic"], later)
        assert new.id != old.id
        assert new.expires_at == later + timedelta(days=30)

    def test_remaining_days_rounds_up(self):
        sub = Subscription(plan_name="Базовый", expires_at=NOW + timedelta(days=1, hours=12))
        assert remaining_days(sub, NOW) == 2
        assert remaining_days(sub, NOW + timedelta(days=5)) == 0

    def test_format_status(self):
        sub = Subscription(
            plan_name="Стандарт",
            traffic_limit_gb=300,
            used_traffic_gb=12.5,
            expires_at=NOW + timedelta(days=10),
        )
        text = format_status(sub, NOW)
        assert "Стандарт" in text
        assert "12.50 ГБ / 300 ГБ" in text
        assert "10 дн." in text


class TestPaymentService:
    """Тесты оплаты"""

    @pytest.mark.asyncio
    async def test_create_payment(self, session, test_user, plans):
        service = PaymentService(session, "https://pay.test/checkout")
        payment, url = await service.create_payment(test_user, plans["basic"])

        assert payment.status == "pending"
        assert payment.amount == 199
        assert payment.provider == "mock"
        assert url.startswith("https://pay.test/checkout?")
        assert f"payment_id={payment.provider_payment_id}" in url
        assert "amount=199" in url

    @pytest.mark.asyncio
    async def test_confirm_payment(self, session, test_user, plans, xui_api, fake_panel):
        service = PaymentService(session)
        payment, _ = await service.create_payment(test_user, plans["standard"])

        result = await service.confirm_payment(payment.id, VPNService(session, xui_api), NOW)

        assert result.success is True
        assert result.vpn_error is None
        assert result.subscription.expires_at == NOW + timedelta(days=30)
        assert result.vpn_client.inbound_id == 1
        assert payment.status == "succeeded"
        assert payment.paid_at == NOW

        client = fake_panel.added_clients()[0]
        assert client["limitIp"] == 3
        assert client["expiryTime"] == to_expiry_ms(result.subscription.expires_at)
        assert client["id"] == result.vpn_client.client_uuid

    @pytest.mark.asyncio
    async def test_confirm_payment_idempotent(self, session, test_user, plans, xui_api, fake_panel):
        """Повторное подтверждение ничего не продлевает и не создаёт"""
        service = PaymentService(session)
        payment, _ = await service.create_payment(test_user, plans["basic"])
        first = await service.confirm_payment(payment.id, VPNService(session, xui_api), NOW)

        again = await service.confirm_payment(payment.id, VPNService(session, xui_api), NOW)

        assert again.success is True
        assert again.already_processed is True
        assert len(fake_panel.added) == 1
        sub = await SubscriptionService(session).get_active_subscription(test_user.id, NOW)
        assert sub.expires_at == first.subscription.expires_at

    @pytest.mark.asyncio
    async def test_confirm_payment_panel_down(self, session, test_user, plans, unreachable_api):
        """Панель недоступна: подписка всё равно активирована"""
        service = PaymentService(session)
        payment, _ = await service.create_payment(test_user, plans["basic"])

        result = await service.confirm_payment(payment.id, VPNService(session, unreachable_api), NOW)

        assert result.success is True
        assert result.vpn_client is None
        assert result.vpn_error
        assert await SubscriptionService(session).get_active_subscription(test_user.id, NOW) is not None

    @pytest.mark.asyncio
    async def test_confirm_unknown_payment(self, session, xui_api):
        result = await PaymentService(session).confirm_payment(999, VPNService(session, xui_api))
        assert result.success is False
        assert result.error == "Платёж не найден"

    @pytest.mark.asyncio
    async def test_failed_payment_cannot_be_confirmed(self, session, test_user, plans, xui_api):
        service = PaymentService(session)
        payment, _ = await service.create_payment(test_user, plans["basic"])
        assert await service.fail_payment(payment.id) is True
        assert await service.fail_payment(payment.id) is False

        result = await service.confirm_payment(payment.id, VPNService(session, xui_api))
        assert result.success is False

    @pytest.mark.asyncio
    async def test_stats(self, session, test_user, plans, xui_api):
        service = PaymentService(session)
        paid, _ = await service.create_payment(test_user, plans["pro"])
        await service.create_payment(test_user, plans["basic"])
        await service.confirm_payment(paid.id, VPNService(session, xui_api), NOW)

        assert await service.stats() == {"succeeded": 1, "revenue": 999, "pending": 1}


class TestVPNService:
    """Тесты выдачи VPN"""

    @pytest.mark.asyncio
    async def test_sync_servers_from_panel(self, session, xui_api):
        vpn = VPNService(session, xui_api)
        created, error = await vpn.sync_servers_from_panel("vpn.example.com", "EU")

        assert error is None
        assert [(s.inbound_id, s.protocol, s.port) for s in created] == [(1, "vless", 443), (2, "vmess", 8443)]
        assert created[0].name == "Германия"
        assert created[0].address == "vpn.example.com"

        again, _ = await vpn.sync_servers_from_panel("vpn.example.com", "EU")
        assert again == []
        assert len(await vpn.get_servers()) == 2

    @pytest.mark.asyncio
    async def test_sync_servers_panel_down(self, session, unreachable_api):
        created, error = await VPNService(session, unreachable_api).sync_servers_from_panel("vpn.example.com")
        assert created == []
        assert error

    @pytest.mark.asyncio
    async def test_sync_skips_inbound_without_id(self, session, xui_api, fake_panel):
        """Инбаунд без id пропускается, остальные заводятся"""
        fake_panel.inbounds.insert(0, {"remark": "без id", "protocol": "vless", "port": 1, "enable": True})

        created, error = await VPNService(session, xui_api).sync_servers_from_panel("vpn.example.com")

        assert error is None
        assert [s.inbound_id for s in created] == [1, 2]

    @pytest.mark.asyncio
    async def test_provision_first_panel_inbound(self, session, test_user, plans, xui_api, fake_panel):
        """Без сервера и настройки берётся первый инбаунд панели с id"""
        fake_panel.inbounds.insert(0, {"remark": "без id", "protocol": "vless", "port": 1, "enable": True})
        sub = await SubscriptionService(session).activate(test_user.id, plans["basic"], NOW)

        client, error = await VPNService(session, xui_api).provision(test_user, sub)

        assert error is None
        assert client.inbound_id == 1
        assert fake_panel.added[0]["id"] == 1

    @pytest.mark.asyncio
    async def test_provision_no_inbound_ids(self, session, test_user, plans, xui_api, fake_panel):
        fake_panel.inbounds = [{"remark": "без id", "protocol": "vless", "port": 1, "enable": True}]
        sub = await SubscriptionService(session).activate(test_user.id, plans["basic"], NOW)

        client, error = await VPNService(session, xui_api).provision(test_user, sub)

        assert client is None
        assert error == "В панели нет ни одного инбаунда"
        assert fake_panel.added == []

    @pytest.mark.asyncio
    async def test_provision_uses_default_inbound(self, session, test_user, plans, xui_api, fake_panel):
        sub = await SubscriptionService(session).activate(test_user.id, plans["basic"], NOW)
        vpn = VPNService(session, xui_api, default_inbound_id=2)

        client, error = await vpn.provision(test_user, sub)

        assert error is None
        assert client.inbound_id == 2
        assert client.email.startswith(f"tg{test_user.telegram_id}-")
        assert fake_panel.added[0]["id"] == 2
        assert fake_panel.inbound_calls == 0

    @pytest.mark.asyncio
    async def test_provision_panel_rejects(self, session, test_user, plans, xui_api, fake_panel):
        fake_panel.add_success = False
        sub = await SubscriptionService(session).activate(test_user.id, plans["basic"], NOW)

        client, error = await VPNService(session, xui_api).provision(test_user, sub)

        assert client is None
        assert error == "Duplicate email"
        count = await session.execute(select(func.count(VpnClient.id)))
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_get_or_provision_reuses_client(self, session, test_user, test_server, plans, xui_api, fake_panel):
        sub = await SubscriptionService(session).activate(test_user.id, plans["basic"], NOW)
        vpn = VPNService(session, xui_api)

        first, _ = await vpn.get_or_provision(test_user, sub, test_server)
        second, _ = await vpn.get_or_provision(test_user, sub, test_server)

        assert first.id == second.id
        assert first.server_id == test_server.id
        assert len(fake_panel.added) == 1

    @pytest.mark.asyncio
    async def test_get_or_provision_after_extension(self, session, test_user, test_server, plans, xui_api, fake_panel):
        """После продления старый клиент истекает раньше подписки, выдаём новый"""
        subs = SubscriptionService(session)
        sub = await subs.activate(test_user.id, plans["basic"], NOW)
        vpn = VPNService(session, xui_api)
        first, _ = await vpn.get_or_provision(test_user, sub, test_server)

        sub = await subs.activate(test_user.id, plans["basic"], NOW)
        second, _ = await vpn.get_or_provision(test_user, sub, test_server)

        assert second.id != first.id
        assert second.expiry_time_ms == to_expiry_ms(NOW + timedelta(days=60))
        assert len(fake_panel.added) == 2

    def test_to_expiry_ms(self):
        assert to_expiry_ms(None) == 0
        assert to_expiry_ms(datetime(1970, 1, 2)) == 86400000


class TestConfigLink:
    """Тесты ссылок для импорта"""

    UUID = "0b6a1c2e-1d2f-4a3b-9c4d-5e6f7a8b9c0d"

    def test_vless_link(self):
        server = Server(name="DE", address="de.vpn.example.com", port=443, inbound_id=1, protocol="vless")
        client = VpnClient(client_uuid=self.UUID, inbound_id=1, email="x")

        link = build_config_link(client, server)

        assert link == (
            f"vless://{self.UUID}@de.vpn.example.com:443"
            "?type=tcp&encryption=none&security=tls&sni=de.vpn.example.com#VPN-DE"
        )

    def test_vmess_link(self):
        server = Server(name="NL", address="nl.vpn.example.com", port=8443, inbound_id=2, protocol="vmess")
        client = VpnClient(client_uuid=self.UUID, inbound_id=2, email="x")

        link = build_config_link(client, server)

        assert link.startswith("vmess://")
        config = json.loads(base64.b64decode(link[len("vmess://"):]))
        assert config["id"] == self.UUID
        assert config["add"] == "nl.vpn.example.com"
        assert config["port"] == "8443"
        assert config["ps"] == "VPN-NL"
