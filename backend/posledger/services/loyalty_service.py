# Overview: Loyalty program config, point earn/redeem/adjust and reporting.

"""
Loyalty Service

Points live on Customer.loyalty_points (loyalty_points holder, never
negative). Earn and redeem happen inside sale checkout; manual adjustments
go through adjust_points. The walk-in customer never earns or holds points.

EARN RULE:
    points = (net_amount_cents // amount_per_point_cents) * points_per_amount
"""

from __future__ import annotations

from sqlalchemy import case, func

from ..extensions import db
from ..models import Customer, LedgerEntry, LoyaltyConfig
from . import audit_service
from .balance_service import (
    Actor,
    HolderRef,
    IdempotentReplay,
    LedgerDescriptor,
    Mutation,
    MutationResult,
    PreconditionFailed,
    holder_history,
    mutation_boundary,
)
from .catalog_service import get_customer, walk_in_customer_id
from .holders import LOYALTY_POINTS
from .preconditions import at_least, sufficient_balance

CONFIG_FIELDS = ("points_per_amount", "amount_per_point_cents", "min_redeem_points", "point_value_cents", "is_active")
DEFAULT_CONFIG = {
    "points_per_amount": 1,
    "amount_per_point_cents": 10000,
    "min_redeem_points": 100,
    "point_value_cents": 1,
    "is_active": False,
}


def points_ref(customer_id: int) -> HolderRef:
    return HolderRef(LOYALTY_POINTS.name, customer_id)


# =============================================================================
# CONFIG
# =============================================================================

def get_config() -> LoyaltyConfig:
    """
    Singleton config row.

    Before the first update there is no row; an unsaved config carrying the
    defaults (program inactive) is returned so reads never write.
    """
    config = db.session.query(LoyaltyConfig).order_by(LoyaltyConfig.id).first()
    if config is None:
        config = LoyaltyConfig(**DEFAULT_CONFIG)
    return config


def update_config(patch: dict, actor: Actor) -> LoyaltyConfig:
    changes = {key: value for key, value in patch.items() if key in CONFIG_FIELDS}
    for key, value in changes.items():
        if key != "is_active" and (not isinstance(value, int) or isinstance(value, bool) or value < 1):
            raise PreconditionFailed(f"{key} must be a positive integer")

    config = get_config()
    if config.id is None:
        db.session.add(config)
    for key, value in changes.items():
        setattr(config, key, bool(value) if key == "is_active" else value)
    db.session.commit()

    audit_service.log_action(actor, "loyalty.config_update", "loyalty_config", config.id, config.to_dict())
    return config


# =============================================================================
# MUTATION BUILDERS (used by checkout)
# =============================================================================

def points_for_amount(net_amount_cents: int, config: LoyaltyConfig) -> int:
    if net_amount_cents <= 0 or config.amount_per_point_cents <= 0:
        return 0
    return (net_amount_cents // config.amount_per_point_cents) * config.points_per_amount


def earns_points(customer_id: int | None, config: LoyaltyConfig) -> bool:
    return bool(config.is_active) and customer_id is not None and customer_id != walk_in_customer_id()


def redeem_mutation(customer_id: int, points: int, config: LoyaltyConfig) -> Mutation:
    if not config.is_active:
        raise PreconditionFailed("Loyalty program is not active")
    if customer_id == walk_in_customer_id():
        raise PreconditionFailed("Walk-in customers cannot redeem points")
    return Mutation(points_ref(customer_id), -points, preconditions=(
        at_least(config.min_redeem_points, "Minimum {minimum} points required to redeem"),
        sufficient_balance("Insufficient points. Available: {available}"),
    ))


# =============================================================================
# MANUAL ADJUSTMENT
# =============================================================================

def adjust_points(
    customer_id: int,
    points: int,
    actor: Actor,
    *,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> MutationResult:
    if not points:
        raise PreconditionFailed("Customer and points required")
    if customer_id == walk_in_customer_id():
        raise PreconditionFailed("Walk-in customers cannot hold points")
    get_customer(customer_id)

    note = description or "Manual adjustment"
    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            entry = txn.apply(
                Mutation(points_ref(customer_id), points, preconditions=(
                    sufficient_balance("Insufficient points for negative adjustment"),
                )),
                LedgerDescriptor("adjust", "customer", customer_id, note),
            )
            txn.audit("loyalty.adjust", "customer", customer_id, {
                "points": points,
                "new_balance": entry.balance_after,
                "description": note,
            })
    except IdempotentReplay as replay:
        return replay.result

    return txn.result


# =============================================================================
# QUERIES
# =============================================================================

def customer_points(customer_id: int) -> dict:
    customer = get_customer(customer_id)
    history = holder_history(points_ref(customer_id), limit=50)
    return {
        "customer_id": customer.id,
        "name": customer.name,
        "loyalty_points": customer.loyalty_points,
        "transactions": [e.to_dict() for e in history],
    }


def leaderboard(limit: int = 10) -> list[dict]:
    earned = func.coalesce(func.sum(case((LedgerEntry.kind == "earn", LedgerEntry.delta), else_=0)), 0)
    rows = (
        db.session.query(Customer, earned.label("total_earned"))
        .outerjoin(LedgerEntry, db.and_(
            LedgerEntry.holder_type == LOYALTY_POINTS.name,
            LedgerEntry.holder_key == db.cast(Customer.id, db.String),
        ))
        .filter(Customer.id != walk_in_customer_id(), Customer.loyalty_points > 0)
        .group_by(Customer.id)
        .order_by(Customer.loyalty_points.desc(), Customer.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "customer_id": c.id,
            "name": c.name,
            "loyalty_points": c.loyalty_points,
            "total_earned": int(total_earned),
        }
        for c, total_earned in rows
    ]


def loyalty_stats() -> dict:
    circulation, members = (
        db.session.query(
            func.coalesce(func.sum(Customer.loyalty_points), 0),
            func.count(case((Customer.loyalty_points > 0, 1))),
        )
        .filter(Customer.id != walk_in_customer_id())
        .one()
    )
    redeemed = (
        db.session.query(func.coalesce(func.sum(-LedgerEntry.delta), 0))
        .filter(LedgerEntry.holder_type == LOYALTY_POINTS.name, LedgerEntry.kind == "redeem")
        .scalar()
    )
    return {
        "total_points_circulation": int(circulation),
        "active_members": members,
        "total_redeemed": int(redeemed),
        "is_active": bool(get_config().is_active),
    }
