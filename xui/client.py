"""
Клиент для API панели 3x-ui.

Держит одну авторизованную сессию на панель: кэширует bearer-токен,
перелогинивается когда токен истёк или панель ответила 401.
Ни одна публичная операция не бросает исключений, всё возвращается
как ApiResult.

Использование:
    xui_api = XuiApi(PanelSettings.from_env())
    result = await xui_api.get_inbounds()
    if result.success:
        inbounds = result.obj
"""

import asyncio
import errno
import json
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import aiohttp

from .config import PanelSettings, SessionState
from .models import (
    ApiResult,
    ClientEntry,
    PanelHTTPError,
    PanelResponseError,
    ProbeReport,
    CODE_AUTH_FAILED,
    CODE_BAD_RESPONSE,
    CODE_NOT_FOUND,
    CODE_PANEL_ERROR,
    CODE_TIMEOUT,
    CODE_UNAUTHORIZED,
    generate_uuid,
)

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_BAD_REQUEST = 400

USER_AGENT = "XUITester/1.0"

Operation = Callable[[str], Awaitable[ApiResult]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transport_error_code(error: Exception) -> str:
    """Код ошибки соединения в стиле errno (ECONNREFUSED, ETIMEDOUT...)"""
    if isinstance(error, asyncio.TimeoutError):
        return CODE_TIMEOUT
    if isinstance(error, aiohttp.ClientConnectorError):
        name = errno.errorcode.get(error.errno or 0)
        if name:
            return name
        # Ошибки резолвера (gaierror) не попадают в errno.errorcode
        return CODE_NOT_FOUND
    return type(error).__name__.upper()


class XuiApi:
    """Клиент для 3x-ui API"""

    def __init__(
        self,
        settings: Optional[PanelSettings] = None,
        *,
        max_retries: int = 3,
        login_timeout: float = 10.0,
        request_timeout: float = 15.0,
        probe_timeout: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._state = SessionState(settings=settings or PanelSettings.from_env())
        self.max_retries = max(1, max_retries)
        self.login_timeout = login_timeout
        self.request_timeout = request_timeout
        self.probe_timeout = probe_timeout
        self._clock = clock or _utcnow

    # === СОСТОЯНИЕ ===

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def settings(self) -> PanelSettings:
        return self._state.settings

    def is_token_valid(self) -> bool:
        """Можно ли использовать закэшированный токен прямо сейчас"""
        return self._state.is_token_valid(self._clock())

    def update_settings(self, url: str, username: str, password: str) -> ApiResult:
        """Сменить панель. Токен сбрасывается всегда."""
        self._state = self._state.with_settings(PanelSettings(url, username, password))
        logger.info(f"XUI: настройки обновлены, панель {self._state.settings.url}")
        return ApiResult.ok()

    # === HTTP ===

    async def _get_session(self, timeout: float) -> aiohttp.ClientSession:
        """HTTP сессия с отключенной проверкой SSL (у панелей часто самоподписанный сертификат)"""
        connector = aiohttp.TCPConnector(ssl=False)
        return aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=timeout),
        )

    async def _request(
        self,
        settings: PanelSettings,
        method: str,
        path: str,
        *,
        timeout: float,
        token: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> dict:
        """
        Запрос к панели. Возвращает разобранный JSON.

        Raises:
            PanelHTTPError: статус 4xx/5xx
            PanelResponseError: тело не JSON-объект
            asyncio.TimeoutError, aiohttp.ClientError: проблемы соединения
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        async with await self._get_session(timeout) as session:
            async with session.request(
                method,
                f"{settings.url}{path}",
                json=payload,
                headers=headers,
            ) as response:
                if response.status >= HTTP_BAD_REQUEST:
                    text = await response.text(errors="replace")
                    raise PanelHTTPError(response.status, text[:200] or (response.reason or ""))
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise PanelResponseError(f"Ответ панели не JSON: {e}") from e

        if not isinstance(data, dict):
            raise PanelResponseError("Ответ панели не является объектом")
        return data

    def _transport_failure(self, error: Exception, url: str) -> ApiResult:
        code = transport_error_code(error)
        if code == CODE_TIMEOUT:
            message = f"Панель {url} не ответила вовремя"
        else:
            message = f"Не удалось подключиться к {url}: {error}"
        logger.error(f"XUI connection error: {code} {error!r}")
        return ApiResult.fail(message, code)

    # === АВТОРИЗАЦИЯ ===

    async def login(self) -> ApiResult:
        """Получить токен. Закэшированный токен меняется только при успехе."""
        settings = self._state.settings
        logger.info(f"XUI: авторизация на {settings.url} как {settings.username}")

        try:
            data = await self._request(
                settings,
                "POST",
                "/login",
                timeout=self.login_timeout,
                payload={"username": settings.username, "password": settings.password},
            )
        except PanelHTTPError as e:
            logger.error(f"XUI auth error: {e.status} - {e.message}")
            code = CODE_AUTH_FAILED if e.status == HTTP_UNAUTHORIZED else f"HTTP_{e.status}"
            return ApiResult.fail(e.message or "Ошибка авторизации", code)
        except PanelResponseError as e:
            return ApiResult.fail(str(e), CODE_BAD_RESPONSE)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            return self._transport_failure(e, settings.url)

        if not data.get("success"):
            message = data.get("msg") or "Authentication failed"
            logger.warning(f"XUI: панель отказала в авторизации: {message}")
            return ApiResult.fail(message, CODE_AUTH_FAILED)

        token = data.get("token")
        if not token and isinstance(data.get("obj"), dict):
            token = data["obj"].get("token")
        if not token:
            return ApiResult.fail("Панель не вернула токен", CODE_BAD_RESPONSE)

        self._state = self._state.with_token(token, self._clock())
        logger.info("XUI: авторизация успешна")
        return ApiResult.ok(message=data.get("msg") or "")

    async def authenticated_request(
        self,
        operation: Operation,
        retries_left: Optional[int] = None,
    ) -> ApiResult:
        """
        Выполнить operation(token) с авторизацией.

        На 401 токен сбрасывается и цепочка повторяется, пока не кончится
        бюджет попыток. Бюджет передаётся аргументом, поэтому параллельные
        вызовы друг другу его не портят.
        """
        if retries_left is None:
            retries_left = self.max_retries

        if not self.is_token_valid():
            login_result = await self.login()
            if not login_result.success:
                return login_result

        url = self._state.settings.url
        try:
            return await operation(self._state.token)
        except PanelHTTPError as e:
            if e.status != HTTP_UNAUTHORIZED:
                logger.error(f"XUI request error: {e.status} - {e.message}")
                return ApiResult.fail(e.message or f"Ошибка панели: {e.status}", f"HTTP_{e.status}")

            self._state = self._state.without_token()
            if retries_left > 1:
                logger.warning(f"XUI: токен отклонён панелью, перелогиниваемся (осталось {retries_left - 1})")
                return await self.authenticated_request(operation, retries_left - 1)

            logger.error("XUI: токен отклонён панелью, попытки исчерпаны")
            return ApiResult.fail("Панель отклоняет авторизацию", CODE_UNAUTHORIZED)
        except PanelResponseError as e:
            return ApiResult.fail(str(e), CODE_BAD_RESPONSE)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            return self._transport_failure(e, url)

    # === ИНБАУНДЫ ===

    async def get_inbounds(self) -> ApiResult:
        """Список инбаундов панели (как есть)"""
        settings = self._state.settings

        async def operation(token: str) -> ApiResult:
            data = await self._request(
                settings,
                "GET",
                "/panel/api/inbounds",
                timeout=self.request_timeout,
                token=token,
            )
            if data.get("success") is False:
                return ApiResult.fail(data.get("msg") or "Failed to fetch inbound data", CODE_PANEL_ERROR)

            inbounds = data.get("obj")
            if inbounds is None:
                inbounds = []
            if not isinstance(inbounds, list):
                return ApiResult.fail("Неожиданный формат списка инбаундов", CODE_BAD_RESPONSE)
            return ApiResult.ok(inbounds, data.get("msg") or "")

        return await self.authenticated_request(operation)

    async def add_client(self, inbound_id: int, entry: ClientEntry) -> ApiResult:
        """Добавить готового клиента в инбаунд"""
        settings = self._state.settings
        payload = {
            "id": inbound_id,
            "settings": json.dumps({"clients": [entry.to_payload()]}),
        }

        async def operation(token: str) -> ApiResult:
            data = await self._request(
                settings,
                "POST",
                "/panel/api/inbounds/addClient",
                timeout=self.request_timeout,
                token=token,
                payload=payload,
            )
            if data.get("success"):
                logger.info(f"XUI: создан клиент {entry.email} в инбаунде {inbound_id}")
                return ApiResult.ok(entry.to_payload(), data.get("msg") or "")

            message = data.get("msg") or "Failed to create client"
            logger.error(f"XUI create client error: {message}")
            result = ApiResult.fail(message, CODE_PANEL_ERROR)
            result.obj = entry.to_payload()
            return result

        return await self.authenticated_request(operation)

    async def create_client(
        self,
        inbound_id: int,
        email: str,
        device_limit: int = 0,
        expiry_time_ms: int = 0,
    ) -> ApiResult:
        """
        Создать клиента в инбаунде.

        Args:
            inbound_id: ID инбаунда в панели
            email: метка клиента (в 3x-ui уникальна в пределах панели)
            device_limit: лимит одновременных IP (0 = без лимита)
            expiry_time_ms: срок действия, Unix-время в мс (0 = бессрочно)

        Returns:
            ApiResult, в obj описание созданного клиента
        """
        entry = ClientEntry(
            id=generate_uuid(),
            email=email,
            limit_ip=device_limit,
            expiry_time=expiry_time_ms,
        )
        return await self.add_client(inbound_id, entry)

    async def create_similar_client(self, template_inbound: dict, email: str = "user@example.com") -> ApiResult:
        """Клиент с настройками под протокол шаблонного инбаунда"""
        entry = ClientEntry(id=generate_uuid(), email=email)
        if template_inbound.get("protocol") == "vless":
            entry.flow = ""
        return await self.add_client(template_inbound["id"], entry)

    # === ПРОВЕРКА ПОДКЛЮЧЕНИЯ ===

    async def test_connection(
        self,
        url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> ApiResult:
        """
        Попробовать войти с новыми (или текущими) настройками.

        При успехе новые настройки остаются активными, при неудаче
        состояние клиента возвращается к прежнему значению.
        """
        previous = self._state
        self._state = previous.with_settings(previous.settings.merged(url, username, password))

        result = ApiResult.fail("Connection test failed")
        try:
            result = await self.login()
            return result
        finally:
            if not result.success:
                self._state = previous
                logger.warning(f"XUI: проверка подключения не прошла, настройки восстановлены ({previous.settings.url})")

    async def probe(
        self,
        url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> ProbeReport:
        """
        Диагностика панели в два шага: HEAD на корень, затем логин.
        Состояние клиента не меняется.
        """
        settings = self._state.settings.merged(url, username, password)
        details = {"url": settings.url}

        # Шаг 1: сеть
        try:
            async with await self._get_session(self.probe_timeout) as session:
                async with session.head(settings.url, headers={"User-Agent": USER_AGENT}) as response:
                    details["head_status"] = response.status
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            failure = self._transport_failure(e, settings.url)
            return ProbeReport(False, "connectivity", failure.message, failure.code, details=details)

        # Шаг 2: логин
        try:
            data = await self._request(
                settings,
                "POST",
                "/login",
                timeout=self.login_timeout,
                payload={"username": settings.username, "password": settings.password},
            )
        except PanelHTTPError as e:
            return ProbeReport(False, "login", f"Failed to login to {settings.url}/login", f"HTTP_{e.status}", e.status, details)
        except PanelResponseError as e:
            return ProbeReport(False, "login", str(e), CODE_BAD_RESPONSE, details=details)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            failure = self._transport_failure(e, settings.url)
            return ProbeReport(False, "login", failure.message, failure.code, details=details)

        if not data.get("success"):
            return ProbeReport(False, "login", data.get("msg") or "Unknown authentication error", CODE_AUTH_FAILED, details=details)

        return ProbeReport(True, "done", "Successfully connected to XUI panel", details=details)
