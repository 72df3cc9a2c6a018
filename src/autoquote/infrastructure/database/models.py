"""
SQLAlchemy 模型：商品、客户、定价规则、成交记录、候选实体与系统日志
"""
from sqlalchemy import (
    Column, BigInteger, String, DateTime, Text, Boolean, Integer, Float, JSON,
    Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from datetime import datetime


Base = declarative_base()

# sqlite 只支持 INTEGER 自增主键
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Product(Base):
    """
    商品主数据
    """
    __tablename__ = "products"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)
    aliases = Column(JSON, nullable=True)  # ["可口可乐", "快乐水"]
    barcode = Column(String(50), nullable=True)
    category = Column(String(50), nullable=True, index=True)
    unit = Column(String(20), nullable=False, default="个")
    base_cost = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("base_cost >= 0", name="check_product_cost"),
    )


class Partner(Base):
    """
    客户 / 供货商
    """
    __tablename__ = "partners"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, index=True)
    type = Column(String(20), nullable=False, default="customer")  # customer, supplier
    level = Column(String(20), nullable=False, default="normal")
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('customer', 'supplier')", name="check_partner_type"),
        CheckConstraint(
            "level IN ('normal', 'regular', 'small_business', 'big_customer')",
            name="check_partner_level",
        ),
    )


class PricingRuleModel(Base):
    """
    定价规则
    """
    __tablename__ = "pricing_rules"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    scope_type = Column(String(20), nullable=False)  # global, category, level, special
    scope_value = Column(String(100), nullable=True)
    product_id = Column(BigInteger, nullable=True)
    partner_id = Column(BigInteger, nullable=True)
    formula = Column(String(200), nullable=False)
    rounding = Column(String(20), nullable=False, default="round_to_1")
    priority = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
    description = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "scope_type IN ('global', 'category', 'level', 'special')",
            name="check_rule_scope",
        ),
        Index("idx_rules_enabled_priority", "enabled", "priority"),
    )


class TransactionModel(Base):
    """
    成交记录，明细以 JSON 保存
    """
    __tablename__ = "transactions"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    partner_id = Column(BigInteger, nullable=True, index=True)
    partner_name = Column(String(50), nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    items_json = Column(JSON, nullable=False)
    total_price = Column(Float, nullable=False)
    total_cost = Column(Float, nullable=False, default=0.0)
    raw_text = Column(Text, nullable=True)
    intent = Column(String(30), nullable=True)


class CandidateProduct(Base):
    """
    识别出但尚未确认的商品名
    """
    __tablename__ = "candidate_products"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)
    base_cost = Column(Float, nullable=True)
    category = Column(String(50), nullable=True)
    unit = Column(String(20), nullable=True)
    occurrence_count = Column(Integer, nullable=False, default=1)
    is_confirmed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CandidatePartner(Base):
    """
    识别出但尚未确认的客户名
    """
    __tablename__ = "candidate_partners"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, index=True)
    occurrence_count = Column(Integer, nullable=False, default=1)
    is_confirmed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SystemLog(Base):
    """
    系统日志
    """
    __tablename__ = "system_logs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    level = Column(String(20), nullable=False)  # WARNING, ERROR, CRITICAL, BUSINESS
    message = Column(Text, nullable=False)
    extra_data = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_system_logs_level_created", "level", "created_at"),
    )
