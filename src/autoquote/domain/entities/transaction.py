"""
成交记录实体与创建请求（带校验）。
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, validator


class TransactionItem(BaseModel):
    """成交明细"""
    product_name: str = Field(min_length=1, max_length=100, description="商品名")
    quantity: float = Field(gt=0, description="数量")
    unit: str = Field("个", max_length=20, description="单位")
    unit_price: float = Field(ge=0, description="成交单价")
    subtotal: float = Field(ge=0, description="小计")
    cost: float = Field(0.0, ge=0, description="单位成本")
    product_id: Optional[int] = Field(None, description="商品ID")

    @validator('product_name')
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("商品名不能为空")
        return v


class CreateTransactionRequest(BaseModel):
    """创建成交记录的请求"""
    items: List[TransactionItem] = Field(description="成交明细")
    partner_id: Optional[int] = Field(None, description="客户ID")
    partner_name: Optional[str] = Field(None, description="客户名")
    total_price: float = Field(ge=0, description="总价")
    total_cost: float = Field(0.0, ge=0, description="总成本")
    raw_text: str = Field("", description="触发成交的原话")
    intent: str = Field("retail_quote", description="意图")
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @validator('items')
    def validate_items(cls, v):
        if not v:
            raise ValueError("成交明细不能为空")
        return v

    @property
    def gross_profit(self) -> float:
        return round(self.total_price - self.total_cost, 2)
