# Overview: Owner scoping for deal reads and writes.

"""
Deal scope

MANAGER callers without view_all_deals only see and act on the deals they
manage. Everyone else sees all deals. A deal outside the caller's scope is
reported as not found, the same as an archived or missing one.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Deal
from ..errors import NotFoundError
from ..permissions import Actor, sees_all_deals
from .concurrency import lock_for_update


def scoped_deals_query(actor: Actor, *, include_archived: bool = False):
    query = db.session.query(Deal)
    if not include_archived:
        query = query.filter(Deal.is_archived.is_(False))
    if not sees_all_deals(actor):
        query = query.filter(Deal.manager_id == actor.user_id)
    return query


def require_deal(actor: Actor, deal_id: int, *, lock: bool = False, include_archived: bool = False) -> Deal:
    query = scoped_deals_query(actor, include_archived=include_archived).filter(Deal.id == deal_id)
    if lock:
        query = lock_for_update(query)
    deal = query.first()
    if deal is None:
        raise NotFoundError(f"Deal {deal_id} not found", details={"deal_id": deal_id})
    return deal
