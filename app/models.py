from typing import List, Optional

from sqlalchemy import (
    DECIMAL,
    JSON,
    Column,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

from app.utils.time_utils import utcnow

Base = declarative_base()
metadata = Base.metadata

USER_ROLES = ("user", "admin")
USER_PROVIDERS = ("wechat", "anonymous", "password", "admin")
CONSULTATION_STATUSES = ("pending", "contacted", "converted", "cancelled")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        # Unique indexes over nullable columns: absent values never conflict.
        Index("uq_users_email", "email", unique=True),
        Index("uq_users_username", "username", unique=True),
        Index("uq_users_wechat_openid", "wechat_openid", unique=True),
        Index("ix_users_phone", "phone"),
        Index("ix_users_wechat_unionid", "wechat_unionid"),
    )

    id = mapped_column(Integer, primary_key=True)
    username = mapped_column(String(64))
    password_hash = mapped_column(LargeBinary(72))
    display_name = mapped_column(String(120))
    avatar_url = mapped_column(Text)
    email = mapped_column(String(255))
    phone = mapped_column(String(32))
    role = mapped_column(String(16), nullable=False, default="user")
    provider = mapped_column(String(16), nullable=False, default="anonymous")
    wechat_openid = mapped_column(String(128))
    wechat_unionid = mapped_column(String(128))
    wechat_session_key = mapped_column(String(255))
    last_login_at = mapped_column(DateTime)
    last_login_ip = mapped_column(String(64))
    profile_metadata = mapped_column("metadata", JSON, default=dict)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    consultation: Mapped[List["Consultation"]] = relationship(
        "Consultation", uselist=True, back_populates="user"
    )


firm_services = Table(
    "firm_services",
    metadata,
    Column(
        "firm_id",
        Integer,
        ForeignKey("firms.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "service_id",
        Integer,
        ForeignKey("services.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Firm(Base):
    __tablename__ = "firms"
    __table_args__ = (
        Index("uq_firms_slug", "slug", unique=True),
        Index("idx_firms_city", "city"),
    )

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(120), nullable=False)
    slug = mapped_column(String(120), nullable=False)
    city = mapped_column(String(100))
    address = mapped_column(String(255))
    phone = mapped_column(String(32))
    email = mapped_column(String(255))
    contact_email = mapped_column(String(255))
    website = mapped_column(String(255))
    description = mapped_column(Text)
    practice_areas = mapped_column(JSON, default=list)
    tags = mapped_column(JSON, default=list)
    lawyers = mapped_column(JSON, default=list)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    service: Mapped[List["Service"]] = relationship(
        "Service", uselist=True, back_populates="firm"
    )
    linked_services: Mapped[List["Service"]] = relationship(
        "Service", secondary=firm_services, back_populates="firms"
    )
    slots: Mapped[List["FirmSlot"]] = relationship(
        "FirmSlot",
        uselist=True,
        back_populates="firm",
        order_by="FirmSlot.slot_at",
        cascade="all, delete-orphan",
    )

    @property
    def notification_email(self) -> Optional[str]:
        return self.contact_email or self.email


class Service(Base):
    __tablename__ = "services"
    __table_args__ = (
        ForeignKeyConstraint(
            ["firm_id"], ["firms.id"], ondelete="RESTRICT", name="fk_service_firm"
        ),
        Index("fk_service_firm", "firm_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    # Legacy single-firm reference; multi-firm links live in firm_services.
    firm_id = mapped_column(Integer)
    title = mapped_column(String(120), nullable=False)
    description = mapped_column(Text)
    category = mapped_column(String(64))
    price = mapped_column(DECIMAL(10, 2))
    status = mapped_column(String(16), nullable=False, default="active")
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    firm: Mapped[Optional["Firm"]] = relationship("Firm", back_populates="service")
    firms: Mapped[List["Firm"]] = relationship(
        "Firm", secondary=firm_services, back_populates="linked_services"
    )
    slots: Mapped[List["ServiceSlot"]] = relationship(
        "ServiceSlot",
        uselist=True,
        back_populates="service",
        order_by="ServiceSlot.slot_at",
        cascade="all, delete-orphan",
    )

    def belongs_to(self, firm_id: int) -> bool:
        if self.firm_id == firm_id:
            return True
        return any(firm.id == firm_id for firm in self.firms)


class FirmSlot(Base):
    __tablename__ = "firm_slots"
    __table_args__ = (
        ForeignKeyConstraint(
            ["firm_id"], ["firms.id"], ondelete="CASCADE", name="fk_firm_slot_firm"
        ),
        UniqueConstraint("firm_id", "slot_at", name="uq_firm_slot"),
    )

    id = mapped_column(Integer, primary_key=True)
    firm_id = mapped_column(Integer, nullable=False)
    slot_at = mapped_column(DateTime, nullable=False)

    firm: Mapped["Firm"] = relationship("Firm", back_populates="slots")


class ServiceSlot(Base):
    __tablename__ = "service_slots"
    __table_args__ = (
        ForeignKeyConstraint(
            ["service_id"],
            ["services.id"],
            ondelete="CASCADE",
            name="fk_service_slot_service",
        ),
        UniqueConstraint("service_id", "slot_at", name="uq_service_slot"),
    )

    id = mapped_column(Integer, primary_key=True)
    service_id = mapped_column(Integer, nullable=False)
    slot_at = mapped_column(DateTime, nullable=False)

    service: Mapped["Service"] = relationship("Service", back_populates="slots")


class Consultation(Base):
    __tablename__ = "consultations"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_consult_user"),
        ForeignKeyConstraint(["firm_id"], ["firms.id"], name="fk_consult_firm"),
        ForeignKeyConstraint(
            ["service_id"],
            ["services.id"],
            ondelete="SET NULL",
            name="fk_consult_service",
        ),
        Index("ix_consult_user", "user_id"),
        Index("ix_consult_email", "email"),
        Index("ix_consult_phone", "phone"),
        Index("ix_consult_status", "status"),
        Index("ix_consult_created", "created_at"),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer)
    name = mapped_column(String(120), nullable=False)
    phone = mapped_column(String(32), nullable=False)
    email = mapped_column(String(255))
    firm_id = mapped_column(Integer)
    firm_name = mapped_column(String(120))
    service_id = mapped_column(Integer)
    service_name = mapped_column(String(120))
    message = mapped_column(Text)
    preferred_time = mapped_column(DateTime, nullable=False)
    status = mapped_column(String(16), nullable=False, default="pending")
    source = mapped_column(String(16), nullable=False, default="consultation")
    notes = mapped_column(Text)
    created_at = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    user: Mapped[Optional["User"]] = relationship("User", back_populates="consultation")
    firm: Mapped[Optional["Firm"]] = relationship("Firm")
    service: Mapped[Optional["Service"]] = relationship("Service")
