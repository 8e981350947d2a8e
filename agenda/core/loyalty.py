"""Per-client attendance counters and free-service credits.

One account per (tenant, client phone). Mutations are serialized per account
with an in-process lock plus a row lock, so two bookings for the same phone
cannot lose an increment.
"""

from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFoundError
from ..models import ClientRewardAccount
from .clock import tenant_now
from .locks import loyalty_lock
from .schedule import get_business_hours

logger = structlog.get_logger("agenda.loyalty")


def normalize_phone(phone: str | None) -> str | None:
    """Digits only; the result is the account identity key."""
    if not phone:
        return None
    cleaned = "".join(ch for ch in str(phone) if ch.isdigit())
    return cleaned or None


def visits_per_reward() -> int:
    return max(1, int(settings.LOYALTY_VISITS_PER_REWARD))


def eligible_rewards(total_attendances: int, free_services_used: int) -> int:
    return total_attendances // visits_per_reward() - free_services_used


def attendances_until_next_reward(total_attendances: int) -> int:
    step = visits_per_reward()
    remainder = total_attendances % step
    return 0 if remainder == 0 else step - remainder


@dataclass(frozen=True)
class RewardSummary:
    client_name: str
    client_phone: str
    total_attendances: int
    free_services_used: int
    eligible_rewards: int
    attendances_until_next_reward: int
    last_reward_at: datetime | None


def summarize(account: ClientRewardAccount) -> RewardSummary:
    total = int(account.total_attendances or 0)
    used = int(account.free_services_used or 0)
    return RewardSummary(
        client_name=account.client_name,
        client_phone=account.client_phone,
        total_attendances=total,
        free_services_used=used,
        eligible_rewards=eligible_rewards(total, used),
        attendances_until_next_reward=attendances_until_next_reward(total),
        last_reward_at=account.last_reward_at,
    )


def _select_account(db: Session, tenant_id: int, client_phone: str, for_update: bool = False):
    stmt = select(ClientRewardAccount).where(
        ClientRewardAccount.tenant_id == tenant_id,
        ClientRewardAccount.client_phone == client_phone,
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def get_account(db: Session, tenant_id: int, client_phone: str) -> ClientRewardAccount | None:
    return _select_account(db, tenant_id, client_phone)


def get_summary(db: Session, tenant_id: int, client_phone: str) -> RewardSummary:
    account = get_account(db, tenant_id, client_phone)
    if not account:
        raise NotFoundError("Client not found", client_phone=client_phone)
    return summarize(account)


def _get_or_create_locked(
    db: Session, tenant_id: int, client_phone: str, client_name: str
) -> ClientRewardAccount:
    account = _select_account(db, tenant_id, client_phone, for_update=True)
    if account:
        return account

    account = ClientRewardAccount(
        tenant_id=tenant_id,
        client_phone=client_phone,
        client_name=client_name.strip(),
        total_attendances=0,
        free_services_used=0,
    )
    db.add(account)
    try:
        db.flush()
    except IntegrityError:
        # Another process created it first.
        db.rollback()
        account = _select_account(db, tenant_id, client_phone, for_update=True)
        if account is None:
            raise
    else:
        logger.info("reward_account_created", tenant_id=tenant_id, client_phone=client_phone)
    return account


def increment_attendance(
    db: Session, tenant_id: int, client_phone: str, client_name: str
) -> ClientRewardAccount:
    with loyalty_lock(tenant_id, client_phone):
        account = _get_or_create_locked(db, tenant_id, client_phone, client_name)
        account.total_attendances = int(account.total_attendances or 0) + 1
        db.commit()
        db.refresh(account)

    logger.info(
        "attendance_recorded",
        tenant_id=tenant_id,
        client_phone=client_phone,
        total_attendances=account.total_attendances,
    )
    return account


def consume_reward(
    db: Session,
    tenant_id: int,
    client_phone: str,
    now: datetime | None = None,
) -> ClientRewardAccount | None:
    """Redeem one free service if one is available.

    Without an eligible reward this is a no-op returning the account as it
    was (or None when the client has no account). Callers must compare the
    counters to know whether a reward was actually spent.
    """
    with loyalty_lock(tenant_id, client_phone):
        account = _select_account(db, tenant_id, client_phone, for_update=True)
        if account is None:
            db.rollback()
            logger.warning("reward_not_available", tenant_id=tenant_id, client_phone=client_phone)
            return None

        available = eligible_rewards(account.total_attendances, account.free_services_used)
        if available <= 0:
            db.rollback()
            logger.warning(
                "reward_not_available",
                tenant_id=tenant_id,
                client_phone=client_phone,
                total_attendances=account.total_attendances,
                free_services_used=account.free_services_used,
            )
            return account

        if now is None:
            now = tenant_now(get_business_hours(db, tenant_id).timezone)
        account.free_services_used = int(account.free_services_used) + 1
        account.last_reward_at = now
        db.commit()
        db.refresh(account)

    logger.info(
        "reward_consumed",
        tenant_id=tenant_id,
        client_phone=client_phone,
        free_services_used=account.free_services_used,
    )
    return account


def grant_reward(
    db: Session,
    tenant_id: int,
    client_phone: str,
    client_name: str | None = None,
) -> ClientRewardAccount:
    """Admin override: top attendance up to the next reward threshold."""
    step = visits_per_reward()
    with loyalty_lock(tenant_id, client_phone):
        account = _get_or_create_locked(db, tenant_id, client_phone, client_name or client_phone)
        before = int(account.total_attendances or 0)
        account.total_attendances = (before // step + 1) * step
        db.commit()
        db.refresh(account)

    logger.info(
        "reward_granted",
        tenant_id=tenant_id,
        client_phone=client_phone,
        total_attendances_before=before,
        total_attendances=account.total_attendances,
    )
    return account
