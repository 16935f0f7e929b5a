"""
Обработчики базовых команд пользователя: старт, помощь, регистрация, статус.
"""
import logging

from aiogram import Bot, Router, F, types
from aiogram.enums import ParseMode
from aiogram.filters import Command, StateFilter
from aiogram.fsm.context import FSMContext

from config import config
from database import async_session
from services.admin_notify_service import AdminNotifyService
from services.payment_service import PaymentService
from services.subscription_service import SubscriptionService, format_status
from services.user_service import UserService
from states import PaymentStates, RegistrationStates

logger = logging.getLogger(__name__)
router = Router()

ERROR_TEXT = "❌ Произошла ошибка. Попробуйте позже."
NOT_REGISTERED_TEXT = "Сначала зарегистрируйтесь: /register"

COMMANDS_HELP = (
    "/register - Создать аккаунт\n"
    "/subscribe - Купить подписку\n"
    "/status - Статус подписки\n"
    "/extend - Продлить подписку\n"
    "/config - Получить конфигурацию VPN\n"
    "/servers - Список серверов\n"
    "/support - Связаться с поддержкой\n"
    "/cancel - Отменить текущее действие"
)


# --- БАЗОВЫЕ КОМАНДЫ ---

@router.message(Command("start"))
async def command_start(message: types.Message):
    """Обработка команды /start"""
    name = message.from_user.username or message.from_user.first_name or ""
    await message.answer(
        f"Привет{', ' + name if name else ''}! 🌐\n\n"
        f"Я помогу купить и настроить VPN. Что я умею:\n\n"
        f"{COMMANDS_HELP}"
    )

    try:
        async with async_session() as session:
            user = await UserService(session).get_by_telegram_id(message.from_user.id)
        if not user or not user.is_registered:
            await message.answer("Похоже, вы здесь впервые. Создайте аккаунт командой /register")
    except Exception as e:
        logger.error(f"Error checking user: {e}")


@router.message(Command("help"))
async def command_help(message: types.Message):
    await message.answer(f"📚 *Команды*\n\n{COMMANDS_HELP}", parse_mode=ParseMode.MARKDOWN)


@router.message(Command("support"))
async def command_support(message: types.Message):
    await message.answer(f"🛟 Поддержка: {config.SUPPORT_CONTACT}")


@router.message(Command("cancel"))
async def command_cancel(message: types.Message, state: FSMContext):
    """Сбросить состояние диалога. Ожидающий оплаты платёж помечается failed"""
    current = await state.get_state()
    if current is None:
        await message.answer("Нечего отменять.")
        return

    if current == PaymentStates.awaiting_payment.state:
        data = await state.get_data()
        payment_id = data.get("payment_id")
        if payment_id:
            try:
                async with async_session() as session:
                    if await PaymentService(session).fail_payment(payment_id):
                        logger.info(f"Платёж {payment_id} отменён пользователем {message.from_user.id}")
            except Exception as e:
                logger.error(f"Error cancelling payment {payment_id}: {e}")

    await state.clear()
    await message.answer("Действие отменено.")


# --- РЕГИСТРАЦИЯ ---

@router.message(Command("register"))
async def command_register(message: types.Message, state: FSMContext):
    try:
        async with async_session() as session:
            user = await UserService(session).get_by_telegram_id(message.from_user.id)

        if user and user.is_registered:
            await message.answer("Вы уже зарегистрированы! Оформите подписку: /subscribe")
            return

        await state.set_state(RegistrationStates.waiting_for_email)
        await message.answer("Введите ваш email:")
    except Exception as e:
        logger.error(f"Registration error: {e}")
        await message.answer(ERROR_TEXT)


@router.message(StateFilter(RegistrationStates.waiting_for_email), F.text, ~F.text.startswith("/"))
async def process_email(message: types.Message, state: FSMContext, bot: Bot):
    try:
        async with async_session() as session:
            user, error = await UserService(session).register(
                telegram_id=message.from_user.id,
                email=message.text,
                username=message.from_user.username,
            )

        if error == "Введите корректный email":
            # Остаёмся в состоянии, ждём повтор
            await message.answer("Введите корректный email:")
            return

        await state.clear()
        if error:
            await message.answer(f"❌ {error}")
            return

        await message.answer("Регистрация прошла успешно! ✅\n\nОформите подписку: /subscribe")
        await AdminNotifyService(bot, config.OWNER_TELEGRAM_ID).notify_new_user(
            telegram_id=message.from_user.id,
            email=user.email,
            username=message.from_user.username,
        )
    except Exception as e:
        logger.error(f"User creation error: {e}")
        await message.answer("❌ Не удалось создать аккаунт. Попробуйте позже.")


# --- СТАТУС ---

@router.message(Command("status"))
async def command_status(message: types.Message):
    try:
        async with async_session() as session:
            user = await UserService(session).get_by_telegram_id(message.from_user.id)
            if not user or not user.is_registered:
                await message.answer(NOT_REGISTERED_TEXT)
                return

            subscription = await SubscriptionService(session).get_active_subscription(user.id)

        if not subscription:
            await message.answer("У вас нет активной подписки. Оформить: /subscribe")
            return

        await message.answer(
            format_status(subscription) + "\n\nПродлить: /extend",
            parse_mode=ParseMode.MARKDOWN,
        )
    except Exception as e:
        logger.error(f"Status error: {e}")
        await message.answer(ERROR_TEXT)


def register_handlers_user(dp):
    """Регистрация роутера"""
    dp.include_router(router)
