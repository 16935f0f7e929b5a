from aiogram.fsm.state import State, StatesGroup


# Регистрация: ждём email
class RegistrationStates(StatesGroup):
    waiting_for_email = State()


# Оплата: ссылка выдана, ждём подтверждения (data: payment_id)
class PaymentStates(StatesGroup):
    awaiting_payment = State()
