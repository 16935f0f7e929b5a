"""
Модели базы данных (SQLAlchemy ORM).
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, Float, DateTime, ForeignKey, BigInteger
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Базовый класс для всех моделей"""
    pass


class User(Base):
    """Пользователь бота"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Заполняется при /register
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Отношения
    subscriptions: Mapped[list["Subscription"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    vpn_clients: Mapped[list["VpnClient"]] = relationship(back_populates="user", cascade="all, delete-orphan")

    @property
    def is_registered(self) -> bool:
        return bool(self.email)


class Plan(Base):
    """Тарифный план"""
    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(20), unique=True)  # basic/standard/pro
    name: Mapped[str] = mapped_column(String(100))

    price: Mapped[int] = mapped_column(Integer)  # В рублях
    duration_days: Mapped[int] = mapped_column(Integer, default=30)
    traffic_gb: Mapped[int] = mapped_column(Integer, default=0)  # 0 = безлимит
    device_limit: Mapped[int] = mapped_column(Integer, default=1)  # limitIp в панели

    is_active: Mapped[bool] = mapped_column(default=True)


class Subscription(Base):
    """Подписки пользователей"""
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    plan_id: Mapped[Optional[int]] = mapped_column(ForeignKey("plans.id"), nullable=True)

    plan_name: Mapped[str] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), default="active")  # 'active', 'expired', 'cancelled'

    traffic_limit_gb: Mapped[int] = mapped_column(Integer, default=0)
    used_traffic_gb: Mapped[float] = mapped_column(Float, default=0.0)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime)

    user: Mapped["User"] = relationship(back_populates="subscriptions")


class Payment(Base):
    """Платежи"""
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id"))

    amount: Mapped[int] = mapped_column(Integer)  # В рублях
    currency: Mapped[str] = mapped_column(String(3), default="RUB")

    provider: Mapped[str] = mapped_column(String(20), default="mock")
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending")  # 'pending', 'succeeded', 'failed'

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class Server(Base):
    """VPN сервер = инбаунд в панели 3x-ui"""
    __tablename__ = "servers"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    location: Mapped[str] = mapped_column(String(100), default="")

    # Куда подключается клиент
    address: Mapped[str] = mapped_column(String(255))
    port: Mapped[int] = mapped_column(Integer, default=443)

    # Инбаунд в панели
    inbound_id: Mapped[int] = mapped_column(Integer)
    protocol: Mapped[str] = mapped_column(String(20), default="vless")  # vless/vmess

    is_active: Mapped[bool] = mapped_column(default=True)


class VpnClient(Base):
    """Клиент, созданный в панели для пользователя"""
    __tablename__ = "vpn_clients"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    server_id: Mapped[Optional[int]] = mapped_column(ForeignKey("servers.id"), nullable=True)

    inbound_id: Mapped[int] = mapped_column(Integer)
    client_uuid: Mapped[str] = mapped_column(String(36), unique=True)
    email: Mapped[str] = mapped_column(String(255))  # Метка клиента в панели
    expiry_time_ms: Mapped[int] = mapped_column(BigInteger, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user: Mapped["User"] = relationship(back_populates="vpn_clients")
