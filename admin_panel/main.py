"""
Admin Panel для VPN бота.

HTML-дашборд + JSON API поверх клиента панели 3x-ui.
Клиент и фабрика сессий БД передаются в create_app, глобальных синглтонов нет.
"""
import hmac
import html as html_lib
import logging
import secrets
import time
from collections import defaultdict
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, HTTPException, Form, Depends
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from admin_panel.schemas import ClientCreate, PanelSettingsUpdate, ConnectionTest, ServerSync
from xui import ApiResult, XuiApi

logger = logging.getLogger(__name__)

# SECURITY: Rate limiting для защиты от bruteforce
LOGIN_RATE_LIMIT = 5  # максимум попыток
LOGIN_RATE_WINDOW = 300  # за 5 минут (секунд)

DAY_MS = 24 * 60 * 60 * 1000


def esc(value) -> str:
    """SECURITY: Экранирование HTML для защиты от XSS"""
    if value is None:
        return ""
    return html_lib.escape(str(value))


def panel_response(result: ApiResult) -> JSONResponse:
    """ApiResult в JSON, ошибка панели = 502"""
    return JSONResponse(result.to_dict(), status_code=200 if result.success else 502)


def require_admin(request: Request) -> str:
    user = request.session.get("user")
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


async def collect_stats(session_factory) -> dict:
    """Сводка по пользователям, подпискам и платежам"""
    from services.payment_service import PaymentService
    from services.subscription_service import SubscriptionService
    from services.user_service import UserService

    async with session_factory() as session:
        return {
            "users": await UserService(session).count_users(),
            "active_subscriptions": await SubscriptionService(session).count_active(),
            "payments": await PaymentService(session).stats(),
        }


def create_app(
    xui_api: XuiApi,
    session_factory=None,
    admin_password: str = "",
    session_secret: str = "",
) -> FastAPI:
    """Собрать приложение админки"""
    if not session_secret:
        session_secret = secrets.token_hex(32)
        logger.warning("ADMIN_SESSION_SECRET not set, using random value")
    if not admin_password:
        logger.warning("ADMIN_PASSWORD not set!")

    app = FastAPI(title="VPN Admin Panel")
    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie="admin_session",
        max_age=86400,  # 1 день
    )
    app.state.xui_api = xui_api
    app.state.session_factory = session_factory
    app.state.login_attempts = defaultdict(list)

    def is_rate_limited(ip: str) -> bool:
        """Превышен ли лимит попыток входа для IP"""
        now = time.time()
        attempts = app.state.login_attempts
        attempts[ip] = [t for t in attempts[ip] if now - t < LOGIN_RATE_WINDOW]
        return len(attempts[ip]) >= LOGIN_RATE_LIMIT

    # === AUTH ===

    @app.get("/login", response_class=HTMLResponse)
    async def login_page(error: str = None, blocked: str = None):
        page = LOGIN_HTML
        if blocked:
            page = page.replace("<!-- ERROR -->", '<p class="error">Слишком много попыток. Подождите 5 минут.</p>')
        elif error:
            page = page.replace("<!-- ERROR -->", '<p class="error">Неверный пароль</p>')
        return HTMLResponse(page)

    @app.post("/login")
    async def login(request: Request, password: str = Form(...)):
        client_ip = request.client.host if request.client else "unknown"

        if is_rate_limited(client_ip):
            logger.warning(f"Admin login blocked: ip={client_ip}")
            return RedirectResponse(url="/login?blocked=1", status_code=303)

        app.state.login_attempts[client_ip].append(time.time())

        # SECURITY: Сравнение через hmac для защиты от timing attack
        if admin_password and hmac.compare_digest(password, admin_password):
            request.session["user"] = "admin"
            app.state.login_attempts[client_ip] = []
            logger.info(f"Admin login success: ip={client_ip}")
            return RedirectResponse(url="/", status_code=303)

        logger.warning(f"Admin login failed: ip={client_ip}")
        return RedirectResponse(url="/login?error=1", status_code=303)

    @app.get("/logout")
    async def logout(request: Request):
        request.session.clear()
        return RedirectResponse(url="/login", status_code=302)

    # === DASHBOARD ===

    @app.get("/", response_class=HTMLResponse)
    async def dashboard(request: Request):
        if not request.session.get("user"):
            return RedirectResponse(url="/login", status_code=302)

        stats = None
        if app.state.session_factory is not None:
            try:
                stats = await collect_stats(app.state.session_factory)
            except Exception as e:
                logger.error(f"Dashboard stats error: {e}")

        inbounds = await app.state.xui_api.get_inbounds()
        return HTMLResponse(render_dashboard(app.state.xui_api, stats, inbounds))

    # === API ===

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "time": datetime.utcnow().isoformat()}

    @app.get("/api/xui/settings")
    async def get_settings(_: str = Depends(require_admin)):
        return {
            **app.state.xui_api.settings.to_dict(),
            "token_valid": app.state.xui_api.is_token_valid(),
        }

    @app.post("/api/xui/settings")
    async def update_settings(body: PanelSettingsUpdate, _: str = Depends(require_admin)):
        result = app.state.xui_api.update_settings(body.url, body.username, body.password)
        return panel_response(result)

    @app.post("/api/xui/test-connection")
    async def test_connection(body: ConnectionTest, _: str = Depends(require_admin)):
        result = await app.state.xui_api.test_connection(body.url, body.username, body.password)
        return panel_response(result)

    @app.get("/api/xui/probe")
    async def probe(
        url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        _: str = Depends(require_admin),
    ):
        report = await app.state.xui_api.probe(url, username, password)
        return JSONResponse(report.to_dict(), status_code=200 if report.success else 502)

    @app.get("/api/xui/inbounds")
    async def inbounds(_: str = Depends(require_admin)):
        return panel_response(await app.state.xui_api.get_inbounds())

    @app.post("/api/xui/clients")
    async def create_client(body: ClientCreate, _: str = Depends(require_admin)):
        expiry_ms = 0
        if body.expiry_days > 0:
            expiry_ms = int(time.time() * 1000) + body.expiry_days * DAY_MS

        result = await app.state.xui_api.create_client(body.inbound_id, body.email, body.limit_ip, expiry_ms)
        return panel_response(result)

    # === СЕРВЕРЫ ===

    def session_factory_or_503():
        if app.state.session_factory is None:
            raise HTTPException(status_code=503, detail="Database is not configured")
        return app.state.session_factory

    @app.get("/api/servers")
    async def list_servers(_: str = Depends(require_admin)):
        from services.vpn_service import VPNService

        async with session_factory_or_503()() as session:
            servers = await VPNService(session, app.state.xui_api).get_servers()
        return [server_to_dict(s) for s in servers]

    @app.post("/api/servers/sync")
    async def sync_servers(body: ServerSync, _: str = Depends(require_admin)):
        from services.vpn_service import VPNService

        async with session_factory_or_503()() as session:
            created, error = await VPNService(session, app.state.xui_api).sync_servers_from_panel(
                body.address, body.location
            )
        if error:
            return JSONResponse({"success": False, "msg": error}, status_code=502)
        return {"success": True, "obj": [server_to_dict(s) for s in created]}

    return app


def server_to_dict(server) -> dict:
    return {
        "id": server.id,
        "name": server.name,
        "location": server.location,
        "address": server.address,
        "port": server.port,
        "inbound_id": server.inbound_id,
        "protocol": server.protocol,
    }


def render_dashboard(xui_api: XuiApi, stats: Optional[dict], inbounds: ApiResult) -> str:
    """Рендер главной страницы"""
    settings = xui_api.settings

    if stats:
        payments = stats["payments"]
        stats_html = (
            f'<div class="stat"><b>{stats["users"]}</b><span>пользователей</span></div>'
            f'<div class="stat"><b>{stats["active_subscriptions"]}</b><span>активных подписок</span></div>'
            f'<div class="stat"><b>{payments["succeeded"]}</b><span>оплат ({payments["revenue"]}₽)</span></div>'
            f'<div class="stat"><b>{payments["pending"]}</b><span>ожидают оплаты</span></div>'
        )
    else:
        stats_html = '<p class="muted">Статистика недоступна</p>'

    if inbounds.success:
        panel_status = '<span class="badge badge-green">Подключено</span>'
        rows = ""
        for inbound in inbounds.obj:
            rows += (
                f"<tr><td>{esc(inbound.get('id'))}</td>"
                f"<td>{esc(inbound.get('remark') or '—')}</td>"
                f"<td>{esc(inbound.get('protocol'))}</td>"
                f"<td>{esc(inbound.get('port'))}</td></tr>"
            )
        inbounds_html = (
            "<table><tr><th>ID</th><th>Название</th><th>Протокол</th><th>Порт</th></tr>"
            f"{rows}</table>" if rows else '<p class="muted">Инбаундов нет</p>'
        )
    else:
        panel_status = f'<span class="badge badge-red">Ошибка: {esc(inbounds.message)}</span>'
        inbounds_html = ""

    return DASHBOARD_HTML.format(
        stats=stats_html,
        panel_url=esc(settings.url),
        panel_user=esc(settings.username),
        panel_status=panel_status,
        inbounds=inbounds_html,
    )


LOGIN_HTML = """
<!DOCTYPE html>
<html lang="ru">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Admin — Вход</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, sans-serif; background: #f0f2f5;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }
        .card { background: #fff; padding: 40px; border-radius: 12px; width: 320px; box-shadow: 0 4px 20px rgba(0,0,0,.08); }
        h1 { text-align: center; margin-bottom: 20px; font-size: 22px; }
        input { width: 100%; padding: 12px; margin-bottom: 15px; border: 1px solid #ddd; border-radius: 8px; box-sizing: border-box; }
        button { width: 100%; padding: 12px; background: #4f46e5; color: #fff; border: none; border-radius: 8px; cursor: pointer; }
        .error { color: #dc3545; text-align: center; margin-bottom: 15px; }
    </style>
</head>
<body>
    <form class="card" method="post" action="/login">
        <h1>🔐 VPN Admin</h1>
        <!-- ERROR -->
        <input type="password" name="password" placeholder="Пароль" required autofocus>
        <button type="submit">Войти</button>
    </form>
</body>
</html>
"""

DASHBOARD_HTML = """
<!DOCTYPE html>
<html lang="ru">
<head>
    <meta charset="utf-8">
    <title>VPN Admin</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, sans-serif; background: #f0f2f5; margin: 0; padding: 30px; }}
        .card {{ background: #fff; border-radius: 12px; padding: 20px; margin-bottom: 20px; }}
        .stats {{ display: flex; gap: 20px; }}
        .stat b {{ display: block; font-size: 28px; }}
        .muted {{ color: #888; }}
        .badge {{ padding: 3px 8px; border-radius: 6px; font-size: 13px; }}
        .badge-green {{ background: #d1fae5; color: #065f46; }}
        .badge-red {{ background: #fee2e2; color: #991b1b; }}
        table {{ width: 100%; border-collapse: collapse; }}
        th, td {{ text-align: left; padding: 8px; border-bottom: 1px solid #eee; }}
    </style>
</head>
<body>
    <div class="card"><div class="stats">{stats}</div></div>
    <div class="card">
        <h2>Панель 3x-ui</h2>
        <p>{panel_url} ({panel_user}) {panel_status}</p>
        {inbounds}
    </div>
    <p><a href="/logout">Выйти</a></p>
</body>
</html>
"""
