"""
NLU 提示词。
"""
import json
from typing import Optional

from ...domain.entities.nlu import IntentType, NLUContext
from ..utils.text_utils import escape_braces, format_quantity, safe_format

INTENT_DESCRIPTIONS = {
    IntentType.RETAIL_QUOTE: ("零售报价", "张三两瓶可乐多少钱"),
    IntentType.PURCHASE_PRICE_CHECK: ("进货核价", "老李那边可乐进价多少"),
    IntentType.SINGLE_ITEM_QUERY: ("单品价格查询", "可乐怎么卖"),
    IntentType.PRICE_CORRECTION: ("纠错改价", "按11块算"),
    IntentType.CONFIRM: ("确认", "好的、行"),
    IntentType.DENY: ("否定", "不对、重新来"),
    IntentType.UNKNOWN: ("无法识别", ""),
}

RESPONSE_EXAMPLE = {
    "intent": "retail_quote",
    "confidence": 0.95,
    "partner": {"name": "张三", "confidence": 0.9},
    "products": [{"name": "可乐", "quantity": 2, "unit": "瓶", "confidence": 0.95}],
    "prices": [{"value": 3, "unit": "元", "context": "可乐3块"}],
}

SYSTEM_PROMPT_TEMPLATE = """你是一个小店报价助手的意图识别器。请分析用户输入，识别：
1. 意图 (intent)，只能是以下之一：
{intents}
2. 顾客/供货商 (partner)：名称，没有则为 null
3. 商品列表 (products)：每个商品包含名称、数量、单位
4. 价格表达 (prices)：用户提到的具体价格

严格按以下 JSON 格式返回，只返回 JSON，不要其他解释：
""" + escape_braces(json.dumps(RESPONSE_EXAMPLE, ensure_ascii=False, indent=2))

USER_PROMPT_TEMPLATE = """用户输入："{text}"
{hints}"""


def _intent_lines() -> str:
    lines = []
    for intent, (title, example) in INTENT_DESCRIPTIONS.items():
        suffix = f"（如\"{example}\"）" if example else ""
        lines.append(f"   - {intent.value}: {title}{suffix}")
    return "\n".join(lines)


def build_system_prompt() -> str:
    return safe_format(SYSTEM_PROMPT_TEMPLATE, intents=_intent_lines())


def build_user_prompt(text: str, context: Optional[NLUContext] = None) -> str:
    """用户输入 + 会话提示（当前客户、购物车）"""
    hints = []
    if context is not None:
        if context.current_partner:
            hints.append(f"当前顾客：{context.current_partner.name}")
        if context.cart_items:
            cart = "、".join(
                f"{item.name}{format_quantity(item.quantity)}{item.unit}" for item in context.cart_items
            )
            hints.append(f"购物车：{cart}")
        if context.last_intent:
            hints.append(f"上一轮意图：{context.last_intent.value}")
    return safe_format(USER_PROMPT_TEMPLATE, text=text, hints="\n".join(hints)).strip()
