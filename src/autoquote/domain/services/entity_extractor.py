"""
实体抽取：客户、商品、价格。
先查词典（商品、客户名），查不到再用正则模板兜底。
词典是不可变快照，刷新时整体替换，抽取过程中不会读到一半新一半旧的数据。
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from ..entities.nlu import ExtractedEntities, PartnerEntity, PriceEntity, ProductEntity

DICTIONARY_PRODUCT_CONFIDENCE = 0.9
RULE_PRODUCT_CONFIDENCE = 0.7
DICTIONARY_PARTNER_CONFIDENCE = 0.95
RULE_PARTNER_CONFIDENCE = 0.75
QUANTITY_WINDOW = 10
DEFAULT_QUANTITY = 1
DEFAULT_UNIT = "个"

CHINESE_DIGITS = {
    "零": 0, "一": 1, "二": 2, "两": 2, "三": 3, "四": 4,
    "五": 5, "六": 6, "七": 7, "八": 8, "九": 9,
}
CHINESE_MULTIPLIERS = {"十": 10, "百": 100, "千": 1000}

SURNAMES = (
    "张王李赵刘陈杨黄吴周徐孙马朱胡林郭何高罗郑梁谢宋唐许邓冯曹彭曾肖田"
    "董潘袁蔡蒋余于杜叶程魏苏吕丁任卢姚沈韩"
)
NON_PRODUCT_WORDS = frozenset([
    "他", "她", "我", "你", "这", "那", "的", "了", "吗", "呢", "啊", "吧",
    "要", "买", "给", "卖", "拿", "来", "找", "跟", "算", "钱", "按",
])
NON_PRODUCT_FRAGMENTS = ("多少", "几块", "怎么", "什么价", "啥价", "进价")
PRODUCT_HINT_CHARS = ("水", "酒", "纸")

# 中文数字按位书写，"张三两瓶" 中的 "三两" 不是一个数
_CN_NUMBER = (
    r"(?=[零一二两三四五六七八九十百千])"
    r"(?:[一二两三四五六七八九]?千)?(?:[零一二两三四五六七八九]?百)?"
    r"(?:[零一二两三四五六七八九]?十)?零?[一二两三四五六七八九]?"
)
_NUMBER = rf"\d+(?:\.\d+)?|{_CN_NUMBER}"
_UNIT = r"公斤|瓶|包|袋|箱|盒|个|只|条|根|斤|克|块(?![钱\d毛算吧]|$)"
QUANTITY_PATTERN = re.compile(rf"({_NUMBER})({_UNIT})")

PRICE_YUAN_PATTERN = re.compile(r"(\d+(?:\.\d+)?)[块元]钱?")
PRICE_YUAN_JIAO_PATTERN = re.compile(r"(\d+)块(\d)")
PRICE_JIAO_PATTERN = re.compile(r"(\d+)毛")

_NAME_STOP = r"\s,，。、要买拿来给卖"
PARTNER_PATTERNS: Sequence[Tuple[re.Pattern, bool]] = (
    # 给张三 / 卖给老王 / 找李姐 / 跟小刘
    (re.compile(rf"(?:给|卖给?|找|跟)(老|小)?([{SURNAMES}][^{_NAME_STOP}]{{0,2}})"), True),
    # 句首：张三要… / 老李买… / 张三两瓶…（数量已被遮盖）
    (re.compile(rf"^(老|小)?([{SURNAMES}][^{_NAME_STOP}]{{0,2}})(?:要|买|拿|来|、)"), True),
    # 隔壁老王
    (re.compile(rf"隔壁([^{_NAME_STOP}]+)"), False),
    # 楼上李姐
    (re.compile(rf"楼[上下]([^{_NAME_STOP}]+)"), False),
)

# 规则兜底时清理商品名片段
_LEADING_NOISE = re.compile(r"^(?:还要|再来|还有|另外|给我|我要|帮我|要|买|拿|来|给|再|和|跟|加|还|的)+")
_TRAILING_NOISE = re.compile(
    r"(?:多少钱|多少|几块钱|几块|怎么算|怎么卖|卖多少|什么价|啥价|一共|总共|算|吧|了|呢|啊|吗|的|要|买|拿)+$"
)
_QUERY_PATTERN = re.compile(r"^(.+?)(?:怎么卖|卖多少|多少钱|什么价|啥价|几块钱?|进价|进货价|成本)")
_SEGMENT_SPLIT = re.compile(r"[、,，。;；\s]+")
_MASK_CHAR = "、"


def parse_chinese_number(text: str) -> Optional[float]:
    """
    解析阿拉伯数字或中文数字（十、百、千按位累加）。

    Example:
        >>> parse_chinese_number("两")
        2
        >>> parse_chinese_number("三百五十")
        350
        >>> parse_chinese_number("2.5")
        2.5

    Returns:
        数值；无法解析时为 None
    """
    if not text:
        return None
    text = text.strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        value = float(text)
        return int(value) if value.is_integer() else value

    total = 0
    current = 0
    for char in text:
        if char in CHINESE_DIGITS:
            current = CHINESE_DIGITS[char]
        elif char in CHINESE_MULTIPLIERS:
            total += (current or 1) * CHINESE_MULTIPLIERS[char]
            current = 0
        else:
            return None
    return total + current


def is_likely_product(name: str) -> bool:
    """过滤代词、虚词以及像人名的短词"""
    if not name or name in NON_PRODUCT_WORDS:
        return False
    if len(name) > 20:
        return False
    if any(fragment in name for fragment in NON_PRODUCT_FRAGMENTS):
        return False
    if name[0] in SURNAMES and len(name) <= 3:
        if not any(hint in name for hint in PRODUCT_HINT_CHARS):
            return False
    if name[0] in "老小" and len(name) <= 3:
        return False
    if re.fullmatch(rf"(?:{_NUMBER})", name):
        return False
    return True


@dataclass(frozen=True)
class NameDictionary:
    """商品与客户名词典快照，按长度降序，长词优先匹配"""
    products: Tuple[str, ...] = ()
    partners: Tuple[str, ...] = ()
    version: int = 0
    built_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def build(
        cls,
        products: Iterable[str] = (),
        partners: Iterable[str] = (),
        version: int = 0,
    ) -> "NameDictionary":
        return cls(
            products=_unique_longest_first(products),
            partners=_unique_longest_first(partners),
            version=version,
        )

    @property
    def size(self) -> int:
        return len(self.products) + len(self.partners)


def _unique_longest_first(names: Iterable[str]) -> Tuple[str, ...]:
    seen = {}
    for name in names:
        cleaned = (name or "").strip()
        if cleaned and cleaned.lower() not in seen:
            seen[cleaned.lower()] = cleaned
    return tuple(sorted(seen.values(), key=lambda n: (-len(n), n)))


@dataclass
class _QuantityToken:
    start: int
    end: int
    value: float
    unit: str


@dataclass
class _Span:
    name: str
    start: int
    end: int


class EntityExtractor:
    """
    实体抽取器。
    extract_all 永不抛异常，抽不到的字段为空。
    """

    def __init__(self, dictionary: Optional[NameDictionary] = None) -> None:
        self._dictionary = dictionary or NameDictionary()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def dictionary(self) -> NameDictionary:
        return self._dictionary

    def set_dictionary(self, dictionary: NameDictionary) -> None:
        """替换词典快照"""
        self._dictionary = dictionary
        self._logger.info(
            f"词典已更新: v{dictionary.version}, 商品 {len(dictionary.products)}, 客户 {len(dictionary.partners)}"
        )

    def extract_all(self, text: str) -> ExtractedEntities:
        """
        抽取全部实体。

        Args:
            text: 用户原话

        Returns:
            ExtractedEntities
        """
        try:
            dictionary = self._dictionary
            cleaned = _clean(text)
            partner, partner_span = self._extract_partner(cleaned, dictionary)
            products = self._extract_products(cleaned, dictionary, partner_span)
            prices = self.extract_prices(cleaned)
            return ExtractedEntities(products=products, partner=partner, prices=prices)
        except Exception as e:
            self._logger.error(f"实体抽取失败: {e}")
            return ExtractedEntities()

    def extract_products(self, text: str) -> List[ProductEntity]:
        cleaned = _clean(text)
        _, partner_span = self._extract_partner(cleaned, self._dictionary)
        return self._extract_products(cleaned, self._dictionary, partner_span)

    def extract_partner(self, text: str) -> Optional[PartnerEntity]:
        partner, _ = self._extract_partner(_clean(text), self._dictionary)
        return partner

    def extract_prices(self, text: str) -> List[PriceEntity]:
        """
        三轮价格匹配：X块/元[钱]、X块Y（X.Y 元）、X毛（X/10 元）。
        各轮结果不做交叉去重。
        """
        text = _clean(text)
        prices: List[PriceEntity] = []
        for match in PRICE_YUAN_PATTERN.finditer(text):
            prices.append(PriceEntity(value=float(match.group(1)), unit="元", context=match.group(0)))
        for match in PRICE_YUAN_JIAO_PATTERN.finditer(text):
            value = int(match.group(1)) + int(match.group(2)) / 10
            prices.append(PriceEntity(value=value, unit="元", context=match.group(0)))
        for match in PRICE_JIAO_PATTERN.finditer(text):
            prices.append(PriceEntity(value=int(match.group(1)) / 10, unit="元", context=match.group(0)))
        return prices

    # ---- 客户 ----

    def _extract_partner(
        self,
        text: str,
        dictionary: NameDictionary,
    ) -> Tuple[Optional[PartnerEntity], Optional[Tuple[int, int]]]:
        lowered = text.lower()
        for name in dictionary.partners:
            index = lowered.find(name.lower())
            if index >= 0:
                return PartnerEntity(name=name, confidence=DICTIONARY_PARTNER_CONFIDENCE), (index, index + len(name))

        masked = self._mask_non_names(text, dictionary)
        for pattern, with_prefix in PARTNER_PATTERNS:
            match = pattern.search(masked)
            if not match:
                continue
            if with_prefix:
                name = (match.group(1) or "") + match.group(2)
                start = match.start(1) if match.group(1) else match.start(2)
            else:
                name = match.group(1)
                start = match.start(1)
            name = name.strip(_MASK_CHAR)
            if 2 <= len(name) <= 6 and not is_likely_product(name):
                # 连同 "给" "隔壁" 等前缀一起遮盖
                return PartnerEntity(name=name, confidence=RULE_PARTNER_CONFIDENCE), (match.start(0), start + len(name))
        return None, None

    def _mask_non_names(self, text: str, dictionary: NameDictionary) -> str:
        """遮盖词典商品、数量与价格，避免被当成名字的一部分"""
        chars = list(text)
        spans = [(span.start, span.end) for span in _find_dictionary_spans(text, dictionary.products)]
        spans += [(m.start(), m.end()) for m in QUANTITY_PATTERN.finditer(text)]
        spans += [(m.start(), m.end()) for m in PRICE_YUAN_PATTERN.finditer(text)]
        for start, end in spans:
            for i in range(start, end):
                chars[i] = _MASK_CHAR
        return "".join(chars)

    # ---- 商品 ----

    def _extract_products(
        self,
        text: str,
        dictionary: NameDictionary,
        partner_span: Optional[Tuple[int, int]],
    ) -> List[ProductEntity]:
        masked = _mask(text, partner_span)
        tokens = _find_quantities(masked)

        spans = _find_dictionary_spans(masked, dictionary.products)
        if spans:
            products = self._bind_quantities(spans, tokens)
        else:
            products = self._extract_products_by_rule(masked, tokens)
        return _deduplicate(products)

    def _bind_quantities(self, spans: List[_Span], tokens: List[_QuantityToken]) -> List[ProductEntity]:
        """
        为词典命中的商品找数量。
        数量在前的句式（两瓶可乐）优先取紧邻前方的数量，
        商品在前的句式（可乐两瓶）优先取紧邻后方的数量，其次取窗口内最近的未占用数量。
        """
        quantity_first = bool(tokens) and tokens[0].start < spans[0].start
        used = set()
        products = []
        for span in spans:
            token = _pick_token(span, tokens, used, quantity_first)
            if token is not None:
                used.add(id(token))
                quantity, unit = token.value, token.unit
            else:
                quantity, unit = DEFAULT_QUANTITY, DEFAULT_UNIT
            products.append(ProductEntity(
                name=span.name,
                quantity=quantity,
                unit=unit,
                confidence=DICTIONARY_PRODUCT_CONFIDENCE,
            ))
        return products

    def _extract_products_by_rule(self, text: str, tokens: List[_QuantityToken]) -> List[ProductEntity]:
        """
        正则兜底：[数量][单位][商品名] 或 [商品名][数量][单位]。
        没有数量时尝试 "可乐怎么卖" 这类问法。
        """
        if not tokens:
            match = _QUERY_PATTERN.search(text)
            if match:
                name = _clean_fragment(match.group(1), keep="last")
                if is_likely_product(name):
                    return [ProductEntity(name=name, confidence=RULE_PRODUCT_CONFIDENCE)]
            return []

        leading = _clean_fragment(text[:tokens[0].start], keep="last")
        name_first = is_likely_product(leading)
        products = []
        for index, token in enumerate(tokens):
            if name_first:
                start = tokens[index - 1].end if index > 0 else 0
                name = _clean_fragment(text[start:token.start], keep="last")
            else:
                end = tokens[index + 1].start if index + 1 < len(tokens) else len(text)
                name = _clean_fragment(text[token.end:end], keep="first")
            if is_likely_product(name):
                products.append(ProductEntity(
                    name=name,
                    quantity=token.value,
                    unit=token.unit,
                    confidence=RULE_PRODUCT_CONFIDENCE,
                ))
        return products


def _clean(text: Optional[str]) -> str:
    if not text:
        return ""
    return re.sub(r"\s+", "", text)


def _mask(text: str, span: Optional[Tuple[int, int]]) -> str:
    if not span:
        return text
    start, end = span
    return text[:start] + _MASK_CHAR * (end - start) + text[end:]


def _find_quantities(text: str) -> List[_QuantityToken]:
    tokens = []
    for match in QUANTITY_PATTERN.finditer(text):
        value = parse_chinese_number(match.group(1))
        if value is None or value <= 0:
            continue
        tokens.append(_QuantityToken(start=match.start(), end=match.end(), value=value, unit=match.group(2)))
    return tokens


def _find_dictionary_spans(text: str, names: Sequence[str]) -> List[_Span]:
    """词典包含匹配，长词优先，已命中的位置不再匹配更短的词"""
    lowered = text.lower()
    taken = [False] * len(text)
    spans = []
    for name in names:
        index = lowered.find(name.lower())
        while index >= 0 and any(taken[index:index + len(name)]):
            index = lowered.find(name.lower(), index + 1)
        if index < 0:
            continue
        for i in range(index, index + len(name)):
            taken[i] = True
        spans.append(_Span(name=name, start=index, end=index + len(name)))
    spans.sort(key=lambda span: span.start)
    return spans


def _pick_token(
    span: _Span,
    tokens: List[_QuantityToken],
    used: set,
    quantity_first: bool,
) -> Optional[_QuantityToken]:
    free = [token for token in tokens if id(token) not in used]
    before = [token for token in free if token.end <= span.start and span.start - token.end <= 1]
    after = [token for token in free if token.start >= span.end and token.start - span.end <= 1]
    adjacent = (before + after) if quantity_first else (after + before)
    if adjacent:
        return adjacent[0]

    def distance(token: _QuantityToken) -> int:
        if token.end <= span.start:
            return span.start - token.end
        return max(0, token.start - span.end)

    nearby = [token for token in free if distance(token) <= QUANTITY_WINDOW]
    if not nearby:
        return None
    return min(nearby, key=distance)


def _clean_fragment(fragment: str, keep: str) -> str:
    parts = [part for part in _SEGMENT_SPLIT.split(fragment) if part]
    if not parts:
        return ""
    part = parts[-1] if keep == "last" else parts[0]
    part = _LEADING_NOISE.sub("", part)
    part = _TRAILING_NOISE.sub("", part)
    return part


def _deduplicate(products: List[ProductEntity]) -> List[ProductEntity]:
    """按小写名去重，保留置信度更高者"""
    result = {}
    for product in products:
        existing = result.get(product.key)
        if existing is None or product.confidence > existing.confidence:
            result[product.key] = product
    return list(result.values())
