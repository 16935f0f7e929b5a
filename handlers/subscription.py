"""
Хендлеры подписки: выбор тарифа, оплата, серверы, выдача конфигурации.
"""
import asyncio
import logging

from aiogram import Bot, Router, F, types
from aiogram.enums import ParseMode
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext

from config import config
from database import async_session
from keyboards.subscription_kb import plans_keyboard, servers_keyboard, parse_callback_id
from services.admin_notify_service import AdminNotifyService
from services.payment_service import PaymentService
from services.plans import PlanService, format_traffic
from services.subscription_service import SubscriptionService
from services.user_service import UserService
from services.vpn_service import VPNService, build_config_link
from states import PaymentStates
from xui import XuiApi

logger = logging.getLogger(__name__)
router = Router()

ERROR_TEXT = "❌ Произошла ошибка. Попробуйте позже."
NOT_REGISTERED_TEXT = "Сначала зарегистрируйтесь: /register"
NO_SUBSCRIPTION_TEXT = "У вас нет активной подписки. Оформить: /subscribe"

# Держим ссылки на фоновые задачи, иначе их соберёт GC
_background_tasks: set[asyncio.Task] = set()


# === ТАРИФЫ ===

@router.message(Command("subscribe"))
@router.message(Command("extend"))
async def cmd_subscribe(message: types.Message):
    """Показать тарифы (продление идёт тем же путём)"""
    try:
        async with async_session() as session:
            user = await UserService(session).get_by_telegram_id(message.from_user.id)
            if not user or not user.is_registered:
                await message.answer(NOT_REGISTERED_TEXT)
                return
            plans = await PlanService(session).get_active_plans()

        if not plans:
            await message.answer("Сейчас нет доступных тарифов. Попробуйте позже.")
            return

        await message.answer("Выберите тариф:", reply_markup=plans_keyboard(plans))
    except Exception as e:
        logger.error(f"Subscribe error: {e}")
        await message.answer(ERROR_TEXT)


@router.callback_query(F.data.startswith("plan:"))
async def callback_plan(callback: types.CallbackQuery, state: FSMContext, bot: Bot, xui_api: XuiApi):
    """Тариф выбран: создаём платёж и выдаём ссылку"""
    await callback.answer()
    chat_id = callback.message.chat.id

    plan_id = parse_callback_id(callback.data, "plan")
    if plan_id is None:
        await callback.message.answer("Неверный тариф. Попробуйте снова.")
        return

    try:
        async with async_session() as session:
            user = await UserService(session).get_by_telegram_id(callback.from_user.id)
            if not user or not user.is_registered:
                await callback.message.answer(NOT_REGISTERED_TEXT)
                return

            plan = await PlanService(session).get_plan(plan_id)
            if not plan or not plan.is_active:
                await callback.message.answer("Неверный тариф. Попробуйте снова.")
                return

            payments = PaymentService(session, config.PAYMENT_BASE_URL)
            payment, payment_url = await payments.create_payment(user, plan)

        await state.set_state(PaymentStates.awaiting_payment)
        await state.update_data(payment_id=payment.id)

        await callback.message.answer(
            f"Вы выбрали тариф *{plan.name}*\n\n"
            f"Цена: {plan.price}₽\n"
            f"Срок: {plan.duration_days} дн.\n"
            f"Трафик: {format_traffic(plan.traffic_gb)}\n\n"
            f"Оплатите по ссылке ниже:",
            parse_mode=ParseMode.MARKDOWN,
        )
        await callback.message.answer(payment_url)

        # Демо: подтверждаем оплату сами (в проде это делает вебхук платёжки)
        if config.PAYMENT_AUTO_CONFIRM_SECONDS > 0:
            task = asyncio.create_task(
                _auto_confirm(bot, chat_id, payment.id, state, xui_api, config.PAYMENT_AUTO_CONFIRM_SECONDS)
            )
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)
    except Exception as e:
        logger.error(f"Plan selection error: {e}")
        await callback.message.answer(ERROR_TEXT)


async def _auto_confirm(bot: Bot, chat_id: int, payment_id: int, state: FSMContext, xui_api: XuiApi, delay: int):
    await asyncio.sleep(delay)

    # Пользователь мог отменить оплату или начать новую
    if await state.get_state() != PaymentStates.awaiting_payment.state:
        return
    data = await state.get_data()
    if data.get("payment_id") != payment_id:
        return

    await confirm_and_notify(bot, chat_id, payment_id, xui_api)
    await state.clear()


async def confirm_and_notify(bot: Bot, chat_id: int, payment_id: int, xui_api: XuiApi):
    """Подтвердить платёж и сообщить пользователю и админу"""
    try:
        async with async_session() as session:
            vpn = VPNService(session, xui_api, config.XUI_INBOUND_ID)
            result = await PaymentService(session, config.PAYMENT_BASE_URL).confirm_payment(payment_id, vpn)

        if not result.success:
            logger.error(f"Payment confirmation error: {result.error}")
            await bot.send_message(chat_id, "❌ Не удалось активировать подписку. Напишите в поддержку: /support")
            return
        if result.already_processed:
            return

        subscription = result.subscription
        text = (
            f"✅ *Оплата получена!*\n\n"
            f"Тариф {result.plan.name} активирован.\n\n"
            f"Срок: {result.plan.duration_days} дн.\n"
            f"Действует до: {subscription.expires_at.strftime('%d.%m.%Y')}\n"
            f"Трафик: {format_traffic(result.plan.traffic_gb)}\n\n"
            f"Получить конфигурацию: /config"
        )
        if result.vpn_error:
            text += "\n\n⚠️ VPN-аккаунт будет создан при первом запросе /config"
        await bot.send_message(chat_id, text, parse_mode=ParseMode.MARKDOWN)

        await AdminNotifyService(bot, config.OWNER_TELEGRAM_ID).notify_payment(
            telegram_id=chat_id,
            plan_name=result.plan.name,
            amount=result.plan.price,
            vpn_error=result.vpn_error,
        )
    except Exception as e:
        logger.error(f"Payment confirmation error: {e}")
        await bot.send_message(chat_id, "❌ Не удалось активировать подписку. Напишите в поддержку: /support")


# === СЕРВЕРЫ И КОНФИГУРАЦИЯ ===

@router.message(Command("servers"))
async def cmd_servers(message: types.Message, xui_api: XuiApi):
    try:
        async with async_session() as session:
            servers = await VPNService(session, xui_api).get_servers()

        if not servers:
            await message.answer("Серверы пока не настроены.")
            return

        lines = [f"🌍 {s.name}" + (f" — {s.location}" if s.location else "") for s in servers]
        await message.answer("*Доступные серверы:*\n\n" + "\n".join(lines), parse_mode=ParseMode.MARKDOWN)
    except Exception as e:
        logger.error(f"Servers error: {e}")
        await message.answer(ERROR_TEXT)


@router.message(Command("config"))
async def cmd_config(message: types.Message, xui_api: XuiApi):
    try:
        async with async_session() as session:
            user = await UserService(session).get_by_telegram_id(message.from_user.id)
            if not user or not user.is_registered:
                await message.answer(NOT_REGISTERED_TEXT)
                return

            subscription = await SubscriptionService(session).get_active_subscription(user.id)
            if not subscription:
                await message.answer(NO_SUBSCRIPTION_TEXT)
                return

            servers = await VPNService(session, xui_api).get_servers()

        if not servers:
            await message.answer("Серверы пока не настроены.")
            return

        await message.answer("Выберите сервер:", reply_markup=servers_keyboard(servers))
    except Exception as e:
        logger.error(f"Config error: {e}")
        await message.answer(ERROR_TEXT)


@router.callback_query(F.data.startswith("server:"))
async def callback_server(callback: types.CallbackQuery, xui_api: XuiApi):
    await callback.answer()

    server_id = parse_callback_id(callback.data, "server")
    if server_id is None:
        await callback.message.answer("Сервер не найден.")
        return

    try:
        async with async_session() as session:
            user = await UserService(session).get_by_telegram_id(callback.from_user.id)
            if not user or not user.is_registered:
                await callback.message.answer(NOT_REGISTERED_TEXT)
                return

            subscription = await SubscriptionService(session).get_active_subscription(user.id)
            if not subscription:
                await callback.message.answer(NO_SUBSCRIPTION_TEXT)
                return

            vpn = VPNService(session, xui_api, config.XUI_INBOUND_ID)
            server = await vpn.get_server(server_id)
            if not server:
                await callback.message.answer("Сервер не найден.")
                return

            client, error = await vpn.get_or_provision(user, subscription, server)

        if error:
            await callback.message.answer(f"❌ Не удалось получить конфигурацию: {error}")
            return

        await callback.message.answer(f"Ваша конфигурация для сервера {server.name}:")
        await callback.message.answer(f"```\n{build_config_link(client, server)}\n```", parse_mode=ParseMode.MARKDOWN)
    except Exception as e:
        logger.error(f"Server selection error: {e}")
        await callback.message.answer(ERROR_TEXT)
