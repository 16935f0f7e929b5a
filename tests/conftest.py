"""
Pytest fixtures для тестов VPN бота
"""
import asyncio
import json
import socket
from datetime import datetime, timedelta, timezone

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from database.models import Base, User, Server
from services.plans import PlanService
from xui import XuiApi, PanelSettings


PANEL_USERNAME = "admin"
PANEL_PASSWORD = "secret"


class FakePanel:
    """
    Минимальная панель 3x-ui: /login, список инбаундов, addClient.
    Счётчики вызовов и флаги поведения меняются прямо из теста.
    """

    def __init__(self):
        self.url = ""
        self.token = "token-1"
        self.token_in_obj = False      # токен в obj.token вместо token
        self.login_calls = 0
        self.inbound_calls = 0
        self.reject_all = False        # 401 на любой запрос API
        self.reject_next = 0           # 401 на N следующих запросов API
        self.add_success = True
        self.broken_inbounds = False   # 502 с телом не в UTF-8 на список инбаундов
        self.login_delay = 0           # секунд до ответа на /login
        self.head_delay = 0            # секунд до ответа на HEAD /
        self.inbounds_delay = 0        # секунд до ответа на список инбаундов
        self.added = []                # тела addClient
        self.inbounds = [
            {"id": 1, "remark": "Германия", "protocol": "vless", "port": 443, "enable": True},
            {"id": 2, "remark": "Нидерланды", "protocol": "vmess", "port": 8443, "enable": True},
            {"id": 3, "remark": "trojan", "protocol": "trojan", "port": 2053, "enable": True},
            {"id": 4, "remark": "Выключен", "protocol": "vless", "port": 9443, "enable": False},
        ]

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self.index)
        app.router.add_post("/login", self.login)
        app.router.add_get("/panel/api/inbounds", self.list_inbounds)
        app.router.add_post("/panel/api/inbounds/addClient", self.add_client)
        return app

    def _authorized(self, request: web.Request) -> bool:
        if self.reject_all:
            return False
        if self.reject_next > 0:
            self.reject_next -= 1
            return False
        return request.headers.get("Authorization") == f"Bearer {self.token}"

    async def index(self, request):
        if request.method == "HEAD":
            await asyncio.sleep(self.head_delay)
        return web.Response(text="3x-ui")

    async def login(self, request):
        self.login_calls += 1
        await asyncio.sleep(self.login_delay)
        body = await request.json()
        if body.get("username") != PANEL_USERNAME or body.get("password") != PANEL_PASSWORD:
            return web.json_response({"success": False, "msg": "Wrong username or password"})
        if self.token_in_obj:
            return web.json_response({"success": True, "msg": "ok", "obj": {"token": self.token}})
        return web.json_response({"success": True, "msg": "ok", "token": self.token})

    async def list_inbounds(self, request):
        self.inbound_calls += 1
        await asyncio.sleep(self.inbounds_delay)
        if self.broken_inbounds:
            return web.Response(status=502, body=b"\xff\xfe\xfa bad gateway", content_type="text/plain", charset="utf-8")
        if not self._authorized(request):
            return web.json_response({"success": False, "msg": "unauthorized"}, status=401)
        return web.json_response({"success": True, "msg": "", "obj": self.inbounds})

    async def add_client(self, request):
        if not self._authorized(request):
            return web.json_response({"success": False, "msg": "unauthorized"}, status=401)
        body = await request.json()
        self.added.append(body)
        if not self.add_success:
            return web.json_response({"success": False, "msg": "Duplicate email"})
        return web.json_response({"success": True, "msg": "Client added"})

    def added_clients(self) -> list[dict]:
        """Клиенты из всех addClient (settings приходит строкой JSON)"""
        clients = []
        for body in self.added:
            clients.extend(json.loads(body["settings"])["clients"])
        return clients


class FakeClock:
    """Управляемые часы для проверки срока жизни токена"""

    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
async def fake_panel():
    """Поднятая на случайном порту фейковая панель"""
    panel = FakePanel()
    server = TestServer(panel.make_app())
    await server.start_server()
    panel.url = str(server.make_url("/"))
    yield panel
    await server.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def xui_api(fake_panel, clock):
    """Клиент, смотрящий на фейковую панель"""
    return XuiApi(PanelSettings(fake_panel.url, PANEL_USERNAME, PANEL_PASSWORD), clock=clock)


@pytest.fixture
def closed_port():
    """Порт, на котором точно никто не слушает"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def unreachable_api(closed_port):
    """Клиент, панель которого недоступна"""
    return XuiApi(PanelSettings(f"http://127.0.0.1:{closed_port}", PANEL_USERNAME, PANEL_PASSWORD))


@pytest.fixture
async def async_engine():
    """In-memory SQLite для тестов"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(async_engine):
    """Async session для тестов"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    async with async_session_maker() as session:
        yield session


@pytest.fixture
async def plans(session):
    """Тарифы по умолчанию, по коду"""
    await PlanService(session).seed_default_plans()
    return {plan.code: plan for plan in await PlanService(session).get_active_plans()}


@pytest.fixture
async def test_user(session):
    """Зарегистрированный пользователь"""
    user = User(
        telegram_id=123456789,
        username="test_user",
        first_name="Test",
        email="test@example.com",
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
async def test_server(session):
    """Сервер на vless-инбаунде №1 фейковой панели"""
    server = Server(
        name="Германия",
        location="Франкфурт",
        address="de.vpn.example.com",
        port=443,
        inbound_id=1,
        protocol="vless",
    )
    session.add(server)
    await session.commit()
    await session.refresh(server)
    return server
