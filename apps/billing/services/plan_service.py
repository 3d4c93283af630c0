"""
Plan catalog: read access for quota and payments, administrative edits
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List
import logging
import uuid

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.models.plan import Plan, GB, MB
from shared.models.subscription import Subscription
from shared.models.payment import PaymentIntent
from ..exceptions import PlanNotFound, PlanInUse, ValidationError
from .transaction import transaction, read_only

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {"id": "free", "name": "Free", "storage_quota_bytes": 15 * GB, "monthly_price": 0, "annual_price": 0,
     "max_file_size_bytes": 100 * MB, "features": ["15 GB storage"], "priority_support": False},
    {"id": "lite", "name": "Lite", "storage_quota_bytes": 30 * GB, "monthly_price": 49, "annual_price": 499,
     "max_file_size_bytes": 500 * MB, "features": ["30 GB storage"]},
    {"id": "plus", "name": "Plus", "storage_quota_bytes": 50 * GB, "monthly_price": 79, "annual_price": 799,
     "max_file_size_bytes": 1 * GB, "features": ["50 GB storage"]},
    {"id": "basic", "name": "Basic", "storage_quota_bytes": 100 * GB, "monthly_price": 99, "annual_price": 999,
     "max_file_size_bytes": 2 * GB, "features": ["100 GB storage"], "is_popular": True},
    {"id": "pro", "name": "Pro", "storage_quota_bytes": 150 * GB, "monthly_price": 149, "annual_price": 1499,
     "max_file_size_bytes": 4 * GB, "features": ["150 GB storage"]},
    {"id": "standard", "name": "Standard", "storage_quota_bytes": 200 * GB, "monthly_price": 199, "annual_price": 1999,
     "max_file_size_bytes": 8 * GB, "features": ["200 GB storage"]},
    {"id": "premium", "name": "Premium", "storage_quota_bytes": 500 * GB, "monthly_price": 399, "annual_price": 3999,
     "max_file_size_bytes": 16 * GB, "features": ["500 GB storage"]},
]

EDITABLE_FIELDS = {
    "name", "monthly_price", "annual_price", "is_active", "features",
    "is_popular", "sharing_enabled", "priority_support", "sort_order",
}
# Only editable while no active subscription sits on the plan
LIMIT_FIELDS = {"storage_quota_bytes", "max_file_size_bytes"}


def _to_price(field: str, value: Any) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if price < 0:
        raise ValidationError(f"{field} must not be negative", details={"field": field})
    return price


def _to_positive_int(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer", details={"field": field})
    return value


def clean_plan_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and normalise plan attributes present in data"""
    cleaned = dict(data)
    if "name" in cleaned:
        name = (cleaned["name"] or "").strip()
        if not name:
            raise ValidationError("Plan name must not be empty", details={"field": "name"})
        cleaned["name"] = name
    for field in ("monthly_price", "annual_price"):
        if field in cleaned:
            cleaned[field] = _to_price(field, cleaned[field])
    for field in LIMIT_FIELDS:
        if field in cleaned:
            cleaned[field] = _to_positive_int(field, cleaned[field])
    if "features" in cleaned:
        cleaned["features"] = sorted({str(f) for f in (cleaned["features"] or [])})
    return cleaned


async def load_plan(session: AsyncSession, plan_id: str) -> Plan:
    plan = await session.get(Plan, plan_id)
    if not plan:
        raise PlanNotFound(plan_id)
    return plan


class PlanService:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def list_active_plans(self) -> List[Plan]:
        """Active plans in tier order; index order decides upgrade vs downgrade"""
        async with read_only(self.session_factory) as session:
            result = await session.execute(
                select(Plan)
                .where(Plan.is_active == True)
                .order_by(Plan.sort_order, Plan.monthly_price, Plan.id)
            )
            return list(result.scalars().all())

    async def list_plans(self) -> List[Plan]:
        async with read_only(self.session_factory) as session:
            result = await session.execute(
                select(Plan).order_by(Plan.sort_order, Plan.monthly_price, Plan.id)
            )
            return list(result.scalars().all())

    async def get_plan(self, plan_id: str) -> Plan:
        async with read_only(self.session_factory) as session:
            return await load_plan(session, plan_id)

    async def tier_direction(self, from_plan_id: str, to_plan_id: str) -> str:
        """Return 'upgrade', 'downgrade' or 'same' by catalog tier order"""
        if from_plan_id == to_plan_id:
            return "same"

        order = [plan.id for plan in await self.list_active_plans()]
        for plan_id in (from_plan_id, to_plan_id):
            if plan_id not in order:
                # Inactive plans keep their sort_order for comparison
                order = [plan.id for plan in await self.list_plans()]
                break
        if to_plan_id not in order:
            raise PlanNotFound(to_plan_id)
        if from_plan_id not in order:
            raise PlanNotFound(from_plan_id)
        return "upgrade" if order.index(to_plan_id) > order.index(from_plan_id) else "downgrade"

    async def create_plan(self, data: Dict[str, Any]) -> Plan:
        required = ("name", "storage_quota_bytes", "max_file_size_bytes", "monthly_price", "annual_price")
        missing = [field for field in required if field not in data]
        if missing:
            raise ValidationError(f"Missing plan fields: {', '.join(missing)}", details={"fields": missing})
        unknown = set(data) - EDITABLE_FIELDS - LIMIT_FIELDS - {"id"}
        if unknown:
            raise ValidationError(f"Unknown plan fields: {', '.join(sorted(unknown))}")

        cleaned = clean_plan_fields(data)
        plan_id = cleaned.pop("id", None) or f"plan_{uuid.uuid4().hex[:12]}"

        async with transaction(self.session_factory) as session:
            if await session.get(Plan, plan_id):
                raise ValidationError(f"Plan {plan_id} already exists", details={"plan_id": plan_id})
            plan = Plan(id=plan_id, **cleaned)
            if "sort_order" not in cleaned:
                plan.sort_order = await self._next_sort_order(session)
            session.add(plan)

        logger.info(f"Created plan {plan_id}")
        return plan

    async def update_plan(self, plan_id: str, patch: Dict[str, Any]) -> Plan:
        unknown = set(patch) - EDITABLE_FIELDS - LIMIT_FIELDS
        if unknown:
            raise ValidationError(f"Plan fields cannot be edited: {', '.join(sorted(unknown))}")
        cleaned = clean_plan_fields(patch)

        async with transaction(self.session_factory) as session:
            plan = await load_plan(session, plan_id)

            limit_changes = {
                field for field in LIMIT_FIELDS
                if field in cleaned and cleaned[field] != getattr(plan, field)
            }
            if limit_changes and await self._has_active_subscription(session, plan_id):
                raise ValidationError(
                    "Storage limits of a plan with active subscribers cannot change; create a new plan instead",
                    details={"plan_id": plan_id, "fields": sorted(limit_changes)},
                )

            for field, value in cleaned.items():
                setattr(plan, field, value)

        logger.info(f"Updated plan {plan_id}: {sorted(cleaned)}")
        return plan

    async def deactivate_plan(self, plan_id: str) -> Plan:
        return await self.update_plan(plan_id, {"is_active": False})

    async def delete_plan(self, plan_id: str):
        async with transaction(self.session_factory) as session:
            plan = await load_plan(session, plan_id)

            referenced = await session.execute(
                select(
                    exists().where(Subscription.plan_id == plan_id)
                    | exists().where(PaymentIntent.plan_id == plan_id)
                )
            )
            if referenced.scalar():
                raise PlanInUse(plan_id)

            await session.delete(plan)

        logger.info(f"Deleted plan {plan_id}")

    async def seed_default_plans(self) -> int:
        """Insert the default catalog; existing plans are left alone"""
        created = 0
        async with transaction(self.session_factory) as session:
            for index, data in enumerate(DEFAULT_PLANS):
                if await session.get(Plan, data["id"]):
                    continue
                fields = {"priority_support": True, **clean_plan_fields(data)}
                session.add(Plan(sort_order=index, is_active=True, **fields))
                created += 1

        if created:
            logger.info(f"Seeded {created} default plans")
        return created

    async def _has_active_subscription(self, session: AsyncSession, plan_id: str) -> bool:
        result = await session.execute(
            select(
                exists()
                .where(Subscription.plan_id == plan_id)
                .where(Subscription.is_active == True)
            )
        )
        return bool(result.scalar())

    async def _next_sort_order(self, session: AsyncSession) -> int:
        result = await session.execute(select(Plan.sort_order).order_by(Plan.sort_order.desc()).limit(1))
        last = result.scalar_one_or_none()
        return 0 if last is None else last + 1
