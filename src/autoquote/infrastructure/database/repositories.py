"""
基于 SQLAlchemy 的存储实现。
每次调用打开独立会话，领域服务不持有会话。
"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import async_sessionmaker

from ...domain.entities.pricing import (
    PartnerInfo, PriceSample, PricingRule, ProductInfo, RoundingStrategy, ScopeType
)
from ...domain.entities.transaction import CreateTransactionRequest
from .models import (
    CandidatePartner, CandidateProduct, Partner, PricingRuleModel, Product, TransactionModel
)

logger = logging.getLogger(__name__)


def _to_product_info(row: Product) -> ProductInfo:
    return ProductInfo(
        name=row.name,
        base_cost=float(row.base_cost or 0.0),
        category=row.category or "",
        unit=row.unit or "个",
        aliases=list(row.aliases or []),
        id=row.id,
    )


def _to_partner_info(row: Partner) -> PartnerInfo:
    return PartnerInfo(name=row.name, level=row.level, type=row.type, id=row.id)


def _to_pricing_rule(row: PricingRuleModel) -> PricingRule:
    return PricingRule(
        scope_type=ScopeType(row.scope_type),
        formula=row.formula,
        scope_value=row.scope_value,
        rounding=RoundingStrategy.from_string(row.rounding),
        priority=row.priority or 0,
        enabled=bool(row.enabled),
        product_id=row.product_id,
        partner_id=row.partner_id,
        description=row.description or "",
        id=row.id,
    )


class SqlRuleStore:
    """定价规则表"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def load_enabled_rules(self) -> List[PricingRule]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PricingRuleModel)
                .where(PricingRuleModel.enabled.is_(True))
                .order_by(PricingRuleModel.priority.desc())
            )
            rules = []
            for row in result.scalars().all():
                try:
                    rules.append(_to_pricing_rule(row))
                except ValueError as e:
                    logger.warning(f"规则 {row.id} 作用域非法，已跳过: {e}")
            return rules

    async def save_rule(self, rule: PricingRule) -> int:
        async with self._session_factory() as session:
            try:
                row = PricingRuleModel(
                    scope_type=rule.scope_type.value,
                    scope_value=rule.scope_value,
                    product_id=rule.product_id,
                    partner_id=rule.partner_id,
                    formula=rule.formula,
                    rounding=rule.rounding.value,
                    priority=rule.priority,
                    enabled=rule.enabled,
                    description=rule.description or None,
                )
                session.add(row)
                await session.commit()
                await session.refresh(row)
                return row.id
            except Exception:
                await session.rollback()
                raise


class SqlProductCatalog:
    """商品与候选商品"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def find_by_name_or_alias(self, name: str) -> Optional[ProductInfo]:
        key = name.strip().lower()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Product)
                .where(Product.is_active.is_(True))
                .where(func.lower(Product.name) == key)
                .limit(1)
            )
            row = result.scalars().first()
            if row is not None:
                return _to_product_info(row)

            # 别名存为 JSON 数组，在内存中比对
            result = await session.execute(
                select(Product).where(Product.is_active.is_(True)).where(Product.aliases.isnot(None))
            )
            for row in result.scalars().all():
                if any(str(alias).strip().lower() == key for alias in (row.aliases or [])):
                    return _to_product_info(row)
            return None

    async def find_candidate(self, name: str) -> Optional[ProductInfo]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CandidateProduct)
                .where(CandidateProduct.name.icontains(name.strip(), autoescape=True))
                .order_by(CandidateProduct.occurrence_count.desc())
                .limit(1)
            )
            row = result.scalars().first()
            if row is None:
                return None
            return ProductInfo(
                name=row.name,
                base_cost=float(row.base_cost or 0.0),
                category=row.category or "",
                unit=row.unit or "个",
            )


class SqlPartnerDirectory:
    """客户表"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def find_by_name(self, name: str) -> Optional[PartnerInfo]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Partner).where(Partner.name == name.strip()).limit(1)
            )
            row = result.scalars().first()
            return _to_partner_info(row) if row is not None else None

    async def find_by_id(self, partner_id: int) -> Optional[PartnerInfo]:
        async with self._session_factory() as session:
            row = await session.get(Partner, partner_id)
            return _to_partner_info(row) if row is not None else None


class SqlTransactionStore:
    """
    成交记录表，同时作为历史价格来源。
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def save(self, request: CreateTransactionRequest) -> int:
        async with self._session_factory() as session:
            try:
                row = TransactionModel(
                    partner_id=request.partner_id,
                    partner_name=request.partner_name,
                    timestamp=request.timestamp,
                    items_json=[item.model_dump() for item in request.items],
                    total_price=request.total_price,
                    total_cost=request.total_cost,
                    raw_text=request.raw_text,
                    intent=request.intent,
                )
                session.add(row)
                await session.commit()
                await session.refresh(row)
                return row.id
            except Exception:
                await session.rollback()
                raise

    async def _load_transactions(self, since: datetime, partner_id: Optional[int] = None) -> List[TransactionModel]:
        async with self._session_factory() as session:
            query = select(TransactionModel).where(TransactionModel.timestamp >= since)
            if partner_id is not None:
                query = query.where(TransactionModel.partner_id == partner_id)
            result = await session.execute(query.order_by(TransactionModel.timestamp))
            return list(result.scalars().all())

    async def load_price_samples(
        self,
        product_name: str,
        since: datetime,
        partner_id: Optional[int] = None,
    ) -> List[PriceSample]:
        key = product_name.strip().lower()
        samples = []
        for row in await self._load_transactions(since, partner_id):
            for item in row.items_json or []:
                if str(item.get("product_name", "")).strip().lower() != key:
                    continue
                price = item.get("unit_price")
                if price is None:
                    continue
                samples.append(PriceSample(price=float(price), timestamp=row.timestamp))
        return samples

    async def list_sold_products(self, since: datetime) -> List[str]:
        names = {}
        for row in await self._load_transactions(since):
            for item in row.items_json or []:
                name = str(item.get("product_name", "")).strip()
                if name:
                    names.setdefault(name.lower(), name)
        return list(names.values())

    async def list_partner_purchases(self, since: datetime) -> List[Tuple[int, str]]:
        combos = {}
        for row in await self._load_transactions(since):
            if row.partner_id is None:
                continue
            for item in row.items_json or []:
                name = str(item.get("product_name", "")).strip()
                if name:
                    combos.setdefault((row.partner_id, name.lower()), (row.partner_id, name))
        return list(combos.values())


class SqlHotwordSource:
    """热词来源：商品、别名、客户以及未确认的候选实体"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def load_product_names(self) -> List[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Product.name, Product.aliases).where(Product.is_active.is_(True))
            )
            names = []
            for name, aliases in result.all():
                names.append(name)
                names.extend(str(alias) for alias in (aliases or []))

            result = await session.execute(
                select(CandidateProduct.name).where(CandidateProduct.is_confirmed.is_(False))
            )
            names.extend(result.scalars().all())
            return names

    async def load_partner_names(self) -> List[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(Partner.name))
            names = list(result.scalars().all())
            result = await session.execute(
                select(CandidatePartner.name).where(CandidatePartner.is_confirmed.is_(False))
            )
            names.extend(result.scalars().all())
            return names
