"""
解析并校验 AI 返回的 JSON。
兼容两种意图写法：扁平的 {"intent": "...", "confidence": 0.9}
与嵌套的 {"intent": {"type": "...", "confidence": 0.9}}。
"""
import json
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, validator

from ...domain.entities.nlu import (
    IntentResult, IntentType, NLUResult, PartnerEntity, PriceEntity, ProductEntity
)
from ...domain.services.entity_extractor import parse_chinese_number
from ..utils.text_utils import strip_code_fence
from .providers.base import AIResponseFormatError

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class AIProductPayload(BaseModel):
    name: str = Field(min_length=1)
    quantity: float = 1
    unit: str = "个"
    confidence: float = 0.8

    @validator('name', pre=True)
    def strip_name(cls, v):
        return str(v).strip() if v is not None else v

    @validator('quantity', pre=True)
    def parse_quantity(cls, v):
        if v is None or v == "":
            return 1
        if isinstance(v, str):
            parsed = parse_chinese_number(v)
            return parsed if parsed else 1
        if isinstance(v, (int, float)):
            return v if v > 0 else 1
        return v

    @validator('unit', pre=True)
    def default_unit(cls, v):
        return v or "个"

    @validator('confidence', pre=True)
    def default_confidence(cls, v):
        return 0.8 if v is None else _clamp(float(v))


class AIPartnerPayload(BaseModel):
    name: str = Field(min_length=1)
    confidence: float = 0.8

    @validator('confidence', pre=True)
    def default_confidence(cls, v):
        return 0.8 if v is None else _clamp(float(v))


class AIPricePayload(BaseModel):
    value: float
    unit: str = "元"
    context: str = ""

    @validator('unit', pre=True)
    def default_unit(cls, v):
        return v or "元"

    @validator('context', pre=True)
    def default_context(cls, v):
        return v or ""


class AINLUPayload(BaseModel):
    intent: str = "unknown"
    confidence: float = 0.0
    partner: Optional[AIPartnerPayload] = None
    products: List[AIProductPayload] = Field(default_factory=list)
    prices: List[AIPricePayload] = Field(default_factory=list)

    @validator('intent', pre=True)
    def default_intent(cls, v):
        return v or "unknown"

    @validator('confidence', pre=True)
    def clamp_confidence(cls, v):
        return 0.0 if v is None else _clamp(float(v))

    @validator('partner', pre=True)
    def coerce_partner(cls, v):
        if isinstance(v, str):
            return {"name": v} if v.strip() else None
        if isinstance(v, dict) and not v.get("name"):
            return None
        return v

    @validator('products', pre=True)
    def coerce_products(cls, v):
        if not v:
            return []
        items = []
        for item in v:
            if isinstance(item, str):
                item = {"name": item}
            if isinstance(item, dict) and item.get("name"):
                items.append(item)
        return items

    @validator('prices', pre=True)
    def coerce_prices(cls, v):
        if not v:
            return []
        items = []
        for item in v:
            if isinstance(item, str):
                try:
                    item = {"value": float(item.rstrip("元块"))}
                except ValueError:
                    continue
            elif isinstance(item, (int, float)):
                item = {"value": item}
            if isinstance(item, dict) and item.get("value") is not None:
                items.append(item)
        return items


def _flatten_intent(data: Dict[str, Any]) -> Dict[str, Any]:
    intent = data.get("intent")
    if isinstance(intent, dict):
        data = dict(data)
        data["intent"] = intent.get("type") or intent.get("name")
        if intent.get("confidence") is not None:
            data["confidence"] = intent.get("confidence")
    return data


def load_json_object(content: str, provider: str) -> Dict[str, Any]:
    """去掉代码块后解析 JSON 对象，失败时抛 AIResponseFormatError"""
    text = strip_code_fence(content)
    try:
        data = json.loads(text)
    except ValueError:
        match = _JSON_OBJECT.search(text)
        if not match:
            raise AIResponseFormatError(provider, f"响应中没有 JSON: {text[:100]}")
        try:
            data = json.loads(match.group(0))
        except ValueError as e:
            raise AIResponseFormatError(provider, f"JSON 解析失败: {e}", e)
    if not isinstance(data, dict):
        raise AIResponseFormatError(provider, "响应不是 JSON 对象")
    return data


def payload_to_result(payload: AINLUPayload, raw_text: str, provider: str) -> NLUResult:
    intent = IntentType.from_string(payload.intent)
    return NLUResult(
        intent=IntentResult(
            intent=intent,
            confidence=payload.confidence if intent != IntentType.UNKNOWN else 0.0,
            raw_text=raw_text,
        ),
        partner=PartnerEntity(
            name=payload.partner.name,
            confidence=payload.partner.confidence,
        ) if payload.partner else None,
        products=[
            ProductEntity(
                name=p.name,
                quantity=p.quantity,
                unit=p.unit,
                confidence=p.confidence,
            )
            for p in payload.products
        ],
        prices=[PriceEntity(value=p.value, unit=p.unit, context=p.context) for p in payload.prices],
        raw_text=raw_text,
        source="ai",
        metadata={"provider": provider},
    )


def parse_nlu_response(content: str, raw_text: str, provider: str) -> NLUResult:
    """
    把模型输出转换为 NLUResult。

    Args:
        content: 模型原始输出（可能带 ```json 包裹）
        raw_text: 用户原话
        provider: 提供方名称，用于错误信息

    Raises:
        AIResponseFormatError: 输出不是合法 JSON 或字段不合法
    """
    data = _flatten_intent(load_json_object(content, provider))
    try:
        payload = AINLUPayload(**data)
    except (ValidationError, TypeError, ValueError) as e:
        raise AIResponseFormatError(provider, f"字段校验失败: {e}", e)
    return payload_to_result(payload, raw_text, provider)
