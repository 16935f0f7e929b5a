"""
Завести серверы по инбаундам панели 3x-ui.

Запуск:
    python -m scripts.sync_servers vpn.example.com "Германия"
"""
import asyncio
import sys

from config import config
from database import async_session, init_db
from services.vpn_service import VPNService
from xui import XuiApi, PanelSettings


async def sync(address: str, location: str = ""):
    await init_db()

    xui_api = XuiApi(PanelSettings(config.XUI_PANEL_URL, config.XUI_USERNAME, config.XUI_PASSWORD))
    async with async_session() as session:
        created, error = await VPNService(session, xui_api).sync_servers_from_panel(address, location)

    if error:
        print(f"❌ Панель недоступна: {error}")
        sys.exit(1)

    for server in created:
        print(f"✅ {server.name}: {server.protocol} {server.address}:{server.port} (инбаунд {server.inbound_id})")
    print(f"\n📊 Итого добавлено: {len(created)}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Использование: python -m scripts.sync_servers <адрес> [локация]")
        sys.exit(1)
    asyncio.run(sync(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else ""))
