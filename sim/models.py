"""
SQLAlchemy database models for Sim.

Schema for wallet-based profiles, AI personas (advisors), conversations,
message credits, x402 payment sessions and storefronts.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def generate_uuid():
    """Generate a UUID string for primary keys."""
    return str(uuid.uuid4())


def utc_now():
    """Current UTC time as a naive datetime (columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Profile(Base):
    """
    Wallet-backed user profile.
    """

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    wallet_address = Column(String(100), unique=True, nullable=False, index=True)
    username = Column(String(100), nullable=False)
    auth_method = Column(String(20), default="solana")
    plan = Column(String(20), default="free", nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    last_login = Column(DateTime)
    metadata_json = Column("metadata", JSON)

    sessions = relationship("AuthSession", back_populates="profile", cascade="all, delete-orphan")
    credits = relationship("UserCredits", back_populates="profile", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Profile(id={self.id}, wallet={self.wallet_address[:8]}...)>"


class AuthSession(Base):
    """
    Sessions issued after a successful wallet signature exchange.
    """

    __tablename__ = "auth_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    profile_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    refresh_token = Column(String(128), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    last_activity = Column(DateTime, default=utc_now)
    ip_address = Column(String(45))
    user_agent = Column(Text)
    is_active = Column(Boolean, default=True)

    profile = relationship("Profile", back_populates="sessions")

    __table_args__ = (
        Index("idx_auth_session_profile", "profile_id"),
        Index("idx_auth_session_active", "is_active", "expires_at"),
    )

    def __repr__(self):
        return f"<AuthSession(id={self.id}, profile={self.profile_id})>"


class Advisor(Base):
    """
    AI persona ("Sim") profile.
    """

    __tablename__ = "advisors"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"))
    name = Column(String(255), nullable=False)
    title = Column(String(255))
    description = Column(Text)
    prompt = Column(Text, nullable=False)
    category = Column(String(100), index=True)
    avatar_url = Column(Text)
    welcome_message = Column(Text)
    custom_url = Column(String(100), unique=True)
    is_public = Column(Boolean, default=True)
    is_active = Column(Boolean, default=True)
    is_official = Column(Boolean, default=False)
    x402_enabled = Column(Boolean, default=False)
    x402_price = Column(Float)
    x402_wallet = Column(String(100))
    edit_code = Column(String(6), nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    conversations = relationship("Conversation", back_populates="advisor", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_advisor_public", "is_public", "is_active"),
        Index("idx_advisor_owner", "user_id"),
    )

    def __repr__(self):
        return f"<Advisor(id={self.id}, name={self.name})>"


class Conversation(Base):
    """
    A chat thread between a caller (possibly anonymous) and an advisor.
    """

    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"))
    advisor_id = Column(String(36), ForeignKey("advisors.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255))
    is_anonymous = Column(Boolean, default=False)
    last_message = Column(Text)
    last_message_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    advisor = relationship("Advisor", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )

    __table_args__ = (
        Index("idx_conversation_user", "user_id", "advisor_id"),
        Index("idx_conversation_updated", "updated_at"),
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, advisor={self.advisor_id})>"


class Message(Base):
    """
    Single chat message.
    """

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (Index("idx_message_conversation", "conversation_id", "created_at"),)

    def __repr__(self):
        return f"<Message(id={self.id}, role={self.role})>"


class UserCredits(Base):
    """
    Message quota per profile.
    """

    __tablename__ = "user_credits"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    profile_id = Column(String(36), ForeignKey("profiles.id"), unique=True, nullable=False)
    messages_used = Column(Integer, default=0, nullable=False)
    messages_limit = Column(Integer, nullable=False)
    last_reset = Column(DateTime, default=utc_now, nullable=False)
    last_conversation_id = Column(String(36))
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    profile = relationship("Profile", back_populates="credits")

    def __repr__(self):
        return f"<UserCredits(profile={self.profile_id}, used={self.messages_used}/{self.messages_limit})>"


class PaymentSession(Base):
    """
    x402 payment session unlocking a paid advisor for a time window.
    """

    __tablename__ = "payment_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    session_id = Column(String(200), unique=True, nullable=False, index=True)
    agent_id = Column(String(36), ForeignKey("advisors.id", ondelete="CASCADE"))
    wallet_address = Column(String(100), nullable=False, index=True)
    pay_to = Column(String(100))
    payment_signature = Column(String(200), nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(10), default="USDC")
    network = Column(String(50), default="base")
    provider = Column(String(20), default="x402")
    created_at = Column(DateTime, default=utc_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True)
    metadata_json = Column("metadata", JSON)

    __table_args__ = (Index("idx_payment_session_wallet", "wallet_address", "is_active"),)

    def __repr__(self):
        return f"<PaymentSession(session={self.session_id[:16]}..., active={self.is_active})>"


class Store(Base):
    """
    Storefront owned by a profile.
    """

    __tablename__ = "stores"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id"), unique=True, nullable=False)
    store_name = Column(String(255), nullable=False)
    store_description = Column(Text)
    x_username = Column(String(100))
    avatar_url = Column(Text)
    greeting_message = Column(Text)
    crypto_wallet = Column(String(100))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    products = relationship("Product", back_populates="store", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Store(id={self.id}, name={self.store_name})>"


class Product(Base):
    """
    Product listed in a store.
    """

    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    store_id = Column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Float, nullable=False, default=0.0)
    currency = Column(String(10), default="USDC")
    image_urls = Column(JSON)
    delivery_info = Column(Text)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    store = relationship("Store", back_populates="products")

    __table_args__ = (Index("idx_product_store", "store_id", "is_active"),)

    def __repr__(self):
        return f"<Product(id={self.id}, title={self.title})>"


class Purchase(Base):
    """
    Completed x402 purchase of a product.
    """

    __tablename__ = "purchases"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="SET NULL"))
    store_id = Column(String(36), ForeignKey("stores.id", ondelete="SET NULL"))
    buyer_wallet = Column(String(100), nullable=False)
    amount_paid = Column(Float, nullable=False)
    transaction_signature = Column(String(200), nullable=False)
    payment_network = Column(String(50))
    buyer_info = Column(JSON)
    status = Column(String(20), default="completed")
    payment_method = Column(String(20), default="x402")
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (UniqueConstraint("transaction_signature", name="uq_purchase_transaction"),)

    def __repr__(self):
        return f"<Purchase(id={self.id}, product={self.product_id})>"
