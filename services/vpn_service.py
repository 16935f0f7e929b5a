"""
VPN Service - выдача доступа через панель 3x-ui.

Создаёт клиентов в инбаундах панели и собирает ссылки для подключения.

Использование:
    async with async_session() as session:
        vpn = VPNService(session, xui_api)
        client, error = await vpn.provision(user, subscription)
"""

import base64
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Plan, Server, Subscription, User, VpnClient
from xui import XuiApi

logger = logging.getLogger(__name__)


def to_expiry_ms(expires_at: Optional[datetime]) -> int:
    """datetime (naive UTC) -> Unix-время в мс для панели, None -> 0 (бессрочно)"""
    if expires_at is None:
        return 0
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return int(expires_at.timestamp() * 1000)


def build_config_link(client: VpnClient, server: Server) -> str:
    """
    Ссылка для импорта в клиент (v2rayNG, Happ, Streisand...).

    vless://uuid@host:port?type=tcp&encryption=none#name
    vmess://base64(json)
    """
    name = f"VPN-{server.name}"

    if server.protocol == "vmess":
        config = {
            "v": "2",
            "ps": name,
            "add": server.address,
            "port": str(server.port),
            "id": client.client_uuid,
            "aid": "0",
            "net": "tcp",
            "type": "none",
            "host": server.address,
            "tls": "tls",
        }
        encoded = base64.b64encode(json.dumps(config).encode()).decode()
        return f"vmess://{encoded}"

    params = {
        "type": "tcp",
        "encryption": "none",
        "security": "tls",
        "sni": server.address,
    }
    query = "&".join(f"{k}={quote(str(v))}" for k, v in params.items())
    return f"vless://{client.client_uuid}@{server.address}:{server.port}?{query}#{quote(name)}"


class VPNService:
    """Выдача VPN-доступа пользователям"""

    def __init__(self, session: AsyncSession, xui_api: XuiApi, default_inbound_id: int = 0):
        self.session = session
        self.xui = xui_api
        self.default_inbound_id = default_inbound_id

    # === СЕРВЕРЫ ===

    async def get_servers(self) -> list[Server]:
        """Активные серверы"""
        result = await self.session.execute(
            select(Server).where(Server.is_active == True).order_by(Server.id)  # noqa: E712
        )
        return list(result.scalars().all())

    async def get_server(self, server_id: int) -> Optional[Server]:
        server = await self.session.get(Server, server_id)
        if server and server.is_active:
            return server
        return None

    async def add_server(
        self,
        name: str,
        address: str,
        port: int,
        inbound_id: int,
        protocol: str = "vless",
        location: str = "",
    ) -> Server:
        server = Server(
            name=name,
            location=location,
            address=address,
            port=port,
            inbound_id=inbound_id,
            protocol=protocol,
        )
        self.session.add(server)
        await self.session.commit()
        await self.session.refresh(server)
        logger.info(f"VPN: добавлен сервер {name} ({address}:{port}, инбаунд {inbound_id})")
        return server

    async def sync_servers_from_panel(self, address: str, location: str = "") -> tuple[list[Server], Optional[str]]:
        """
        Завести сервер на каждый включённый vless/vmess инбаунд панели,
        которого ещё нет в БД. Возвращает (новые серверы, error).
        """
        result = await self.xui.get_inbounds()
        if not result.success:
            return [], result.message

        existing = await self.session.execute(select(Server.inbound_id))
        known = set(existing.scalars().all())

        created = []
        for inbound in result.obj:
            inbound_id = inbound.get("id")
            if inbound_id is None or inbound_id in known or not inbound.get("enable", True):
                continue
            if inbound.get("protocol") not in ("vless", "vmess"):
                continue
            created.append(await self.add_server(
                name=inbound.get("remark") or f"Inbound #{inbound_id}",
                address=address,
                port=inbound.get("port") or 443,
                inbound_id=inbound_id,
                protocol=inbound["protocol"],
                location=location,
            ))
        return created, None

    # === КЛИЕНТЫ ===

    async def get_latest_client(self, user_id: int, inbound_id: int) -> Optional[VpnClient]:
        """Последний выданный клиент пользователя в инбаунде"""
        result = await self.session.execute(
            select(VpnClient).where(
                VpnClient.user_id == user_id,
                VpnClient.inbound_id == inbound_id,
            ).order_by(VpnClient.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def _resolve_inbound(self, server: Optional[Server]) -> tuple[Optional[int], Optional[str]]:
        """Инбаунд сервера, из настроек или первый в панели"""
        if server:
            return server.inbound_id, None
        if self.default_inbound_id:
            return self.default_inbound_id, None

        result = await self.xui.get_inbounds()
        if not result.success:
            return None, result.message
        ids = [inbound.get("id") for inbound in result.obj or []]
        ids = [inbound_id for inbound_id in ids if inbound_id is not None]
        if not ids:
            return None, "В панели нет ни одного инбаунда"
        return ids[0], None

    async def provision(
        self,
        user: User,
        subscription: Subscription,
        server: Optional[Server] = None,
    ) -> tuple[Optional[VpnClient], Optional[str]]:
        """
        Создать клиента в панели на срок подписки.
        Возвращает (client, error).
        """
        inbound_id, error = await self._resolve_inbound(server)
        if error:
            logger.error(f"VPN: не удалось выбрать инбаунд: {error}")
            return None, error

        device_limit = 0
        if subscription.plan_id:
            plan = await self.session.get(Plan, subscription.plan_id)
            if plan:
                device_limit = plan.device_limit

        # Email в 3x-ui уникален на всю панель
        email = f"tg{user.telegram_id}-{secrets.token_hex(3)}"
        expiry_ms = to_expiry_ms(subscription.expires_at)

        result = await self.xui.create_client(inbound_id, email, device_limit, expiry_ms)
        if not result.success:
            logger.error(f"VPN: панель не создала клиента {email}: {result.message} ({result.code})")
            return None, result.message or "Не удалось создать VPN-аккаунт"

        client = VpnClient(
            user_id=user.id,
            server_id=server.id if server else None,
            inbound_id=inbound_id,
            client_uuid=result.obj["id"],
            email=email,
            expiry_time_ms=expiry_ms,
        )
        self.session.add(client)
        await self.session.commit()
        await self.session.refresh(client)
        logger.info(f"VPN: выдан клиент {email} (user_id={user.id}, inbound={inbound_id})")
        return client, None

    async def get_or_provision(
        self,
        user: User,
        subscription: Subscription,
        server: Server,
    ) -> tuple[Optional[VpnClient], Optional[str]]:
        """Клиент на сервере, покрывающий текущую подписку, иначе создаём новый"""
        client = await self.get_latest_client(user.id, server.inbound_id)
        if client and client.expiry_time_ms >= to_expiry_ms(subscription.expires_at):
            return client, None
        return await self.provision(user, subscription, server)
