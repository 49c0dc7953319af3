"""
Database-backed storage for Sim.

Dict-returning CRUD helpers over the SQLAlchemy models. Wallet challenges go
to Redis when configured and to the in-memory ``storage`` module otherwise.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_

from sim import storage
from sim.database import get_redis, session_scope
from sim.models import (
    Advisor,
    AuthSession,
    Conversation,
    Message,
    PaymentSession,
    Product,
    Profile,
    Purchase,
    Store,
    UserCredits,
    utc_now,
)

logger = logging.getLogger(__name__)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


# ============================================================================
# Serialisation
# ============================================================================


def _profile_to_dict(profile: Profile) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "wallet_address": profile.wallet_address,
        "username": profile.username,
        "auth_method": profile.auth_method,
        "plan": profile.plan,
        "created_at": _iso(profile.created_at),
        "last_login": _iso(profile.last_login),
    }


def _advisor_to_dict(advisor: Advisor, include_edit_code: bool = False) -> Dict[str, Any]:
    data = {
        "id": advisor.id,
        "user_id": advisor.user_id,
        "name": advisor.name,
        "title": advisor.title,
        "description": advisor.description,
        "prompt": advisor.prompt,
        "category": advisor.category,
        "avatar_url": advisor.avatar_url,
        "welcome_message": advisor.welcome_message,
        "custom_url": advisor.custom_url,
        "is_public": advisor.is_public,
        "is_active": advisor.is_active,
        "is_official": advisor.is_official,
        "x402_enabled": bool(advisor.x402_enabled),
        "x402_price": advisor.x402_price,
        "x402_wallet": advisor.x402_wallet,
        "created_at": _iso(advisor.created_at),
        "updated_at": _iso(advisor.updated_at),
    }
    if include_edit_code:
        data["edit_code"] = advisor.edit_code
    return data


def _conversation_to_dict(conversation: Conversation) -> Dict[str, Any]:
    return {
        "id": conversation.id,
        "user_id": conversation.user_id,
        "advisor_id": conversation.advisor_id,
        "title": conversation.title,
        "is_anonymous": conversation.is_anonymous,
        "last_message": conversation.last_message,
        "last_message_at": _iso(conversation.last_message_at),
        "created_at": _iso(conversation.created_at),
        "updated_at": _iso(conversation.updated_at),
    }


def _message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "role": message.role,
        "content": message.content,
        "created_at": _iso(message.created_at),
    }


def _payment_session_to_dict(ps: PaymentSession) -> Dict[str, Any]:
    return {
        "session_id": ps.session_id,
        "agent_id": ps.agent_id,
        "wallet_address": ps.wallet_address,
        "pay_to": ps.pay_to,
        "signature": ps.payment_signature,
        "amount": ps.amount,
        "currency": ps.currency,
        "network": ps.network,
        "provider": ps.provider,
        "created_at": _iso(ps.created_at),
        "expires_at": _iso(ps.expires_at),
        "is_active": ps.is_active,
    }


def _store_to_dict(store: Store) -> Dict[str, Any]:
    return {
        "id": store.id,
        "user_id": store.user_id,
        "store_name": store.store_name,
        "store_description": store.store_description,
        "x_username": store.x_username,
        "avatar_url": store.avatar_url,
        "greeting_message": store.greeting_message,
        "crypto_wallet": store.crypto_wallet,
        "is_active": store.is_active,
        "created_at": _iso(store.created_at),
        "updated_at": _iso(store.updated_at),
    }


def _product_to_dict(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "store_id": product.store_id,
        "title": product.title,
        "description": product.description,
        "price": product.price,
        "currency": product.currency,
        "image_urls": product.image_urls or [],
        "delivery_info": product.delivery_info,
        "is_active": product.is_active,
        "created_at": _iso(product.created_at),
    }


# ============================================================================
# Profiles
# ============================================================================


def get_or_create_profile(wallet_address: str, username: str) -> Dict[str, Any]:
    """
    Find the profile for a wallet or create it.

    Args:
        wallet_address: Base58 wallet address
        username: Username for newly created profiles

    Returns:
        Profile dictionary with an extra ``created`` flag
    """
    with session_scope() as session:
        profile = session.query(Profile).filter_by(wallet_address=wallet_address).first()
        created = False

        if profile is None:
            profile = Profile(wallet_address=wallet_address, username=username, auth_method="solana")
            session.add(profile)
            created = True

        profile.last_login = utc_now()
        session.flush()

        data = _profile_to_dict(profile)
        data["created"] = created
        return data


def get_profile(profile_id: str) -> Optional[Dict[str, Any]]:
    """Get profile by ID."""
    with session_scope() as session:
        profile = session.query(Profile).filter_by(id=profile_id).first()
        return _profile_to_dict(profile) if profile else None


def set_profile_plan(profile_id: str, plan: str) -> None:
    with session_scope() as session:
        profile = session.query(Profile).filter_by(id=profile_id).first()
        if profile:
            profile.plan = plan


# ============================================================================
# Auth Sessions
# ============================================================================


def create_auth_session(
    profile_id: str,
    refresh_token: str,
    ttl_seconds: int,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    """Persist a new sign-in session and return its id."""
    with session_scope() as session:
        auth_session = AuthSession(
            profile_id=profile_id,
            refresh_token=refresh_token,
            expires_at=utc_now() + timedelta(seconds=ttl_seconds),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.add(auth_session)
        session.flush()
        return auth_session.id


def get_auth_session_by_refresh_token(refresh_token: str) -> Optional[Dict[str, Any]]:
    """Active, unexpired session for a refresh token."""
    with session_scope() as session:
        auth_session = session.query(AuthSession).filter_by(refresh_token=refresh_token, is_active=True).first()
        if not auth_session:
            return None

        if auth_session.expires_at < utc_now():
            auth_session.is_active = False
            return None

        return {
            "id": auth_session.id,
            "profile_id": auth_session.profile_id,
            "expires_at": _iso(auth_session.expires_at),
        }


def is_auth_session_active(session_id: str) -> bool:
    with session_scope() as session:
        auth_session = session.query(AuthSession).filter_by(id=session_id, is_active=True).first()
        if not auth_session or auth_session.expires_at < utc_now():
            return False
        auth_session.last_activity = utc_now()
        return True


def rotate_refresh_token(session_id: str, new_refresh_token: str, ttl_seconds: int) -> None:
    with session_scope() as session:
        auth_session = session.query(AuthSession).filter_by(id=session_id).first()
        if auth_session:
            auth_session.refresh_token = new_refresh_token
            auth_session.expires_at = utc_now() + timedelta(seconds=ttl_seconds)
            auth_session.last_activity = utc_now()


def deactivate_auth_session(session_id: str) -> None:
    with session_scope() as session:
        auth_session = session.query(AuthSession).filter_by(id=session_id).first()
        if auth_session:
            auth_session.is_active = False


# ============================================================================
# Wallet Challenges (Redis or in-memory)
# ============================================================================


def store_wallet_challenge(wallet_address: str, challenge_data: Dict[str, Any], ttl: int) -> None:
    """Store a pending sign-in challenge for a wallet, replacing any previous one."""
    redis_client = get_redis()
    if redis_client:
        redis_client.setex(f"challenge:{wallet_address}", ttl, json.dumps(challenge_data))
        return
    storage.store_wallet_challenge(wallet_address, challenge_data, ttl)


def get_wallet_challenge(wallet_address: str) -> Optional[Dict[str, Any]]:
    redis_client = get_redis()
    if redis_client:
        data = redis_client.get(f"challenge:{wallet_address}")
        return json.loads(data) if data else None
    return storage.get_wallet_challenge(wallet_address)


def delete_wallet_challenge(wallet_address: str) -> None:
    redis_client = get_redis()
    if redis_client:
        redis_client.delete(f"challenge:{wallet_address}")
        return
    storage.delete_wallet_challenge(wallet_address)


# ============================================================================
# Advisors
# ============================================================================


def create_advisor(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert a persona.

    Args:
        fields: Column values, already validated

    Returns:
        Advisor dictionary including the edit code
    """
    with session_scope() as session:
        advisor = Advisor(**fields)
        session.add(advisor)
        session.flush()
        return _advisor_to_dict(advisor, include_edit_code=True)


def _find_advisor(session, advisor_ref: str) -> Optional[Advisor]:
    return session.query(Advisor).filter(or_(Advisor.id == advisor_ref, Advisor.custom_url == advisor_ref)).first()


def get_advisor(advisor_ref: str) -> Optional[Dict[str, Any]]:
    """Get an advisor by id or custom URL slug."""
    with session_scope() as session:
        advisor = _find_advisor(session, advisor_ref)
        return _advisor_to_dict(advisor) if advisor else None


def get_advisor_edit_code(advisor_id: str) -> Optional[str]:
    with session_scope() as session:
        advisor = session.query(Advisor).filter_by(id=advisor_id).first()
        return advisor.edit_code if advisor else None


def custom_url_taken(slug: str, exclude_id: Optional[str] = None) -> bool:
    with session_scope() as session:
        query = session.query(Advisor.id).filter(Advisor.custom_url == slug)
        if exclude_id:
            query = query.filter(Advisor.id != exclude_id)
        return query.first() is not None


def list_advisors(
    category: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Public, active advisors; official ones first, then newest."""
    with session_scope() as session:
        query = session.query(Advisor).filter(Advisor.is_public.is_(True), Advisor.is_active.is_(True))

        if category:
            query = query.filter(Advisor.category == category)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(Advisor.name).like(pattern),
                    func.lower(Advisor.title).like(pattern),
                    func.lower(Advisor.description).like(pattern),
                )
            )

        advisors = (
            query.order_by(Advisor.is_official.desc(), Advisor.created_at.desc()).offset(offset).limit(limit).all()
        )
        return [_advisor_to_dict(a) for a in advisors]


def list_advisors_for_owner(user_id: str) -> List[Dict[str, Any]]:
    with session_scope() as session:
        advisors = session.query(Advisor).filter_by(user_id=user_id).order_by(Advisor.created_at.desc()).all()
        return [_advisor_to_dict(a) for a in advisors]


def update_advisor(advisor_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        advisor = session.query(Advisor).filter_by(id=advisor_id).first()
        if not advisor:
            return None

        for key, value in changes.items():
            setattr(advisor, key, value)
        advisor.updated_at = utc_now()
        session.flush()
        return _advisor_to_dict(advisor)


def delete_advisor(advisor_id: str) -> bool:
    """
    Delete an advisor together with its conversations, messages and payment sessions.

    Returns:
        False if the advisor does not exist
    """
    with session_scope() as session:
        advisor = session.query(Advisor).filter_by(id=advisor_id).first()
        if not advisor:
            return False

        session.query(PaymentSession).filter_by(agent_id=advisor_id).delete()
        # ORM cascade removes conversations and their messages
        session.delete(advisor)
        return True


# ============================================================================
# Conversations & Messages
# ============================================================================


def find_conversation(user_id: str, advisor_id: str) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        conversation = (
            session.query(Conversation)
            .filter_by(user_id=user_id, advisor_id=advisor_id)
            .order_by(Conversation.created_at.asc())
            .first()
        )
        return _conversation_to_dict(conversation) if conversation else None


def create_conversation(advisor_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    with session_scope() as session:
        conversation = Conversation(advisor_id=advisor_id, user_id=user_id, is_anonymous=user_id is None)
        session.add(conversation)
        session.flush()
        return _conversation_to_dict(conversation)


def get_conversation(conversation_id: str) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        conversation = session.query(Conversation).filter_by(id=conversation_id).first()
        return _conversation_to_dict(conversation) if conversation else None


def list_conversations(user_id: str) -> List[Dict[str, Any]]:
    """Conversations of a profile, most recently active first, with advisor summary."""
    with session_scope() as session:
        rows = (
            session.query(Conversation, Advisor)
            .join(Advisor, Conversation.advisor_id == Advisor.id)
            .filter(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc())
            .all()
        )
        result = []
        for conversation, advisor in rows:
            data = _conversation_to_dict(conversation)
            data["advisor"] = {"id": advisor.id, "name": advisor.name, "avatar_url": advisor.avatar_url}
            result.append(data)
        return result


def list_messages(conversation_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Messages in ascending creation order.

    With ``limit`` only the most recent ``limit`` messages are returned
    (still ascending).
    """
    with session_scope() as session:
        query = session.query(Message).filter_by(conversation_id=conversation_id)
        if limit:
            recent = query.order_by(Message.created_at.desc()).limit(limit).all()
            return [_message_to_dict(m) for m in reversed(recent)]
        return [_message_to_dict(m) for m in query.order_by(Message.created_at.asc()).all()]


def add_message(conversation_id: str, role: str, content: str) -> Dict[str, Any]:
    """Append a message and refresh the conversation's last-message cache."""
    with session_scope() as session:
        conversation = session.query(Conversation).filter_by(id=conversation_id).first()
        if conversation is None:
            raise LookupError(f"Conversation {conversation_id} not found")

        message = Message(conversation_id=conversation_id, role=role, content=content)
        session.add(message)
        session.flush()

        conversation.last_message = content[:500]
        conversation.last_message_at = message.created_at
        conversation.updated_at = message.created_at
        if conversation.title is None and role == "user":
            conversation.title = content[:80]

        return _message_to_dict(message)


# ============================================================================
# Message Credits
# ============================================================================


def _credits_to_dict(credits: UserCredits, reset_days: int) -> Dict[str, Any]:
    return {
        "used": credits.messages_used,
        "limit": credits.messages_limit,
        "remaining": max(credits.messages_limit - credits.messages_used, 0),
        "last_reset": _iso(credits.last_reset),
        "reset_at": _iso(credits.last_reset + timedelta(days=reset_days)),
    }


def _load_credits(session, profile_id: str, plan_limit: int, reset_days: int) -> UserCredits:
    credits = session.query(UserCredits).filter_by(profile_id=profile_id).with_for_update().first()
    now = utc_now()

    if credits is None:
        credits = UserCredits(profile_id=profile_id, messages_used=0, messages_limit=plan_limit, last_reset=now)
        session.add(credits)
        session.flush()
        return credits

    if credits.messages_limit != plan_limit:
        credits.messages_limit = plan_limit

    if credits.last_reset + timedelta(days=reset_days) <= now:
        credits.messages_used = 0
        credits.last_reset = now

    return credits


def get_credits(profile_id: str, plan_limit: int, reset_days: int) -> Dict[str, Any]:
    """Current quota for a profile, creating or refilling the counter as needed."""
    with session_scope() as session:
        credits = _load_credits(session, profile_id, plan_limit, reset_days)
        return _credits_to_dict(credits, reset_days)


def consume_credit(
    profile_id: str,
    plan_limit: int,
    reset_days: int,
    conversation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Use one message credit.

    Returns:
        Dictionary with ``success`` plus the quota after the attempt
    """
    with session_scope() as session:
        credits = _load_credits(session, profile_id, plan_limit, reset_days)

        success = credits.messages_used < credits.messages_limit
        if success:
            credits.messages_used += 1
            credits.last_conversation_id = conversation_id

        data = _credits_to_dict(credits, reset_days)
        data["success"] = success
        return data


def reset_expired_credits(reset_days: int) -> int:
    """
    Refill every counter whose reset window has elapsed.

    Returns:
        Number of counters reset
    """
    cutoff = utc_now() - timedelta(days=reset_days)
    with session_scope() as session:
        count = (
            session.query(UserCredits)
            .filter(UserCredits.last_reset <= cutoff)
            .update({UserCredits.messages_used: 0, UserCredits.last_reset: utc_now()}, synchronize_session=False)
        )
        return count


# ============================================================================
# Payment Sessions
# ============================================================================


def store_payment_session(session_data: Dict[str, Any]) -> Dict[str, Any]:
    """Persist an x402 payment session."""
    with session_scope() as session:
        payment_session = PaymentSession(
            session_id=session_data["session_id"],
            agent_id=session_data.get("agent_id"),
            wallet_address=session_data["wallet_address"],
            pay_to=session_data.get("pay_to"),
            payment_signature=session_data["signature"],
            amount=session_data["amount"],
            currency=session_data.get("currency", "USDC"),
            network=session_data.get("network", "base"),
            provider=session_data.get("provider", "x402"),
            expires_at=session_data["expires_at"],
            metadata_json=session_data.get("metadata"),
        )
        session.add(payment_session)
        session.flush()
        return _payment_session_to_dict(payment_session)


def get_payment_session(session_id: str) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        payment_session = session.query(PaymentSession).filter_by(session_id=session_id).first()
        return _payment_session_to_dict(payment_session) if payment_session else None


def payment_session_exists(session_id: str) -> bool:
    with session_scope() as session:
        return session.query(PaymentSession.id).filter_by(session_id=session_id).first() is not None


def deactivate_payment_session(session_id: str) -> None:
    with session_scope() as session:
        payment_session = session.query(PaymentSession).filter_by(session_id=session_id).first()
        if payment_session:
            payment_session.is_active = False


# ============================================================================
# Stores, Products & Purchases
# ============================================================================


def create_store(user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    with session_scope() as session:
        store = Store(user_id=user_id, **fields)
        session.add(store)
        session.flush()
        return _store_to_dict(store)


def get_store(store_id: str) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        store = session.query(Store).filter_by(id=store_id).first()
        return _store_to_dict(store) if store else None


def get_store_for_owner(user_id: str) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        store = session.query(Store).filter_by(user_id=user_id).first()
        return _store_to_dict(store) if store else None


def update_store(store_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        store = session.query(Store).filter_by(id=store_id).first()
        if not store:
            return None
        for key, value in changes.items():
            setattr(store, key, value)
        store.updated_at = utc_now()
        session.flush()
        return _store_to_dict(store)


def create_product(store_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    with session_scope() as session:
        product = Product(store_id=store_id, **fields)
        session.add(product)
        session.flush()
        return _product_to_dict(product)


def get_product(product_id: str) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        product = session.query(Product).filter_by(id=product_id).first()
        return _product_to_dict(product) if product else None


def list_products(store_id: str, active_only: bool = True) -> List[Dict[str, Any]]:
    with session_scope() as session:
        query = session.query(Product).filter_by(store_id=store_id)
        if active_only:
            query = query.filter(Product.is_active.is_(True))
        return [_product_to_dict(p) for p in query.order_by(Product.created_at.desc()).all()]


def update_product(product_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        product = session.query(Product).filter_by(id=product_id).first()
        if not product:
            return None
        for key, value in changes.items():
            setattr(product, key, value)
        product.updated_at = utc_now()
        session.flush()
        return _product_to_dict(product)


def delete_product(product_id: str) -> bool:
    with session_scope() as session:
        product = session.query(Product).filter_by(id=product_id).first()
        if not product:
            return False
        session.delete(product)
        return True


def purchase_exists(transaction_signature: str) -> bool:
    with session_scope() as session:
        return session.query(Purchase.id).filter_by(transaction_signature=transaction_signature).first() is not None


def record_purchase(purchase_data: Dict[str, Any]) -> str:
    """Insert a completed purchase and return its id."""
    with session_scope() as session:
        purchase = Purchase(**purchase_data)
        session.add(purchase)
        session.flush()
        return purchase.id


# ============================================================================
# Cleanup Functions
# ============================================================================


def cleanup_expired_sessions() -> int:
    """
    Deactivate expired sign-in and payment sessions.

    Returns:
        Number of sessions deactivated
    """
    now = utc_now()
    with session_scope() as session:
        auth_count = (
            session.query(AuthSession)
            .filter(AuthSession.expires_at < now, AuthSession.is_active.is_(True))
            .update({AuthSession.is_active: False}, synchronize_session=False)
        )
        payment_count = (
            session.query(PaymentSession)
            .filter(PaymentSession.expires_at < now, PaymentSession.is_active.is_(True))
            .update({PaymentSession.is_active: False}, synchronize_session=False)
        )
        return auth_count + payment_count
