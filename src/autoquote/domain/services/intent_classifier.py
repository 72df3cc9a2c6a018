"""
基于规则的意图分类。
每个意图有一组正则和关键词：正则命中得分 0.8 起步，按意图优先级最多加到 1.0；
没有任何正则命中时才按关键词覆盖率打分。无状态、无 I/O。
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Pattern, Union

from ..entities.nlu import IntentResult, IntentType
from ...infrastructure.utils.text_utils import normalize_utterance

PATTERN_BASE_SCORE = 0.8
PATTERN_PRIORITY_BONUS = 0.1
PRIORITY_SCALE = 5
KEYWORD_BASE_SCORE = 0.4
KEYWORD_RANGE = 0.2


@dataclass
class IntentRule:
    """单个意图的识别规则"""
    intent: IntentType
    priority: int
    patterns: List[Pattern] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)

    def pattern_score(self, text: str) -> float:
        if any(pattern.search(text) for pattern in self.patterns):
            return min(1.0, PATTERN_BASE_SCORE + PATTERN_PRIORITY_BONUS * self.priority / PRIORITY_SCALE)
        return 0.0

    def keyword_score(self, text: str) -> float:
        if not self.keywords:
            return 0.0
        matched = sum(1 for keyword in self.keywords if keyword.lower() in text)
        if matched == 0:
            return 0.0
        return KEYWORD_BASE_SCORE + KEYWORD_RANGE * matched / len(self.keywords)


def _compile(patterns: Iterable[str]) -> List[Pattern]:
    return [re.compile(pattern) for pattern in patterns]


def default_intent_rules() -> List[IntentRule]:
    """
    默认规则。否认的优先级高于确认，
    "不对" 不会因为包含 "对" 被当成确认。
    """
    return [
        IntentRule(
            intent=IntentType.RETAIL_QUOTE,
            priority=1,
            patterns=_compile([
                r"([给卖]|要|买|拿|来).+(多少钱|几块|多少|怎么算|算)",
                r"[给卖].+",
                r".+(多少钱|几块钱|多少)",
                r".+(要|买|拿|来).+",
                r"[零一二两三四五六七八九十百千\d]+(瓶|包|袋|箱|盒|个|只|条|根|斤)",
            ]),
            keywords=["给", "卖", "要", "买", "拿", "来", "多少钱", "几块", "怎么算"],
        ),
        IntentRule(
            intent=IntentType.PURCHASE_PRICE_CHECK,
            priority=2,
            patterns=_compile([
                r"进[货价].*多少",
                r"(进货|成本|本钱|批发).*[多少几]",
                r"[从向].*进",
                r"(那边|那儿|那里).*[多少几]",
                r"进价",
            ]),
            keywords=["进货", "进价", "成本", "本钱", "批发", "进"],
        ),
        IntentRule(
            intent=IntentType.SINGLE_ITEM_QUERY,
            priority=3,
            patterns=_compile([
                r".+怎么卖",
                r".+卖多少",
                r".+[多少几]块钱?",
                r".+(什么|啥)价",
            ]),
            keywords=["怎么卖", "卖多少", "什么价", "啥价"],
        ),
        IntentRule(
            intent=IntentType.PRICE_CORRECTION,
            priority=4,
            patterns=_compile([
                r"按\d+(\.\d+)?[块元]",
                r"(算|记|改|调)\d+(\.\d+)?[块元]?",
                r"(贵|便宜)了?\d+",
                r"(不对|错了|改一下|重新算)",
                r"\d+(\.\d+)?[块元](算|吧)",
            ]),
            keywords=["按", "算", "记", "改", "贵了", "便宜", "不对", "错了", "重新"],
        ),
        IntentRule(
            intent=IntentType.CONFIRM,
            priority=5,
            patterns=_compile([
                r"^(好|行|对|是|可以|ok|没问题|就这样|成)$",
                r"^(好的|行的|对的|是的|可以|ok|没问题|就这样|成)[吧了啊呢]?$",
            ]),
            keywords=["好的", "行的", "对的", "是的", "可以", "ok", "没问题", "就这样", "成"],
        ),
        IntentRule(
            intent=IntentType.DENY,
            priority=6,
            patterns=_compile([
                r"^(不|不是|不对|不行|错|重来|重新|再说一遍)$",
                r"^(不对|不是|不行|错了)$",
                r"(不是|不对|不行|错了|重来|重新|再说)一?遍?$",
                r"没有|不要|取消",
            ]),
            keywords=["不是", "不对", "不行", "错", "重来", "重新", "再说", "没有", "不要", "取消"],
        ),
    ]


class IntentClassifier:
    """
    规则意图分类器。
    取所有意图中得分最高者；都不得分时返回 unknown / 0。
    """

    def __init__(self, rules: Optional[List[IntentRule]] = None) -> None:
        self._rules: Dict[IntentType, IntentRule] = {
            rule.intent: rule for rule in (rules if rules is not None else default_intent_rules())
        }
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def classify(self, text: str) -> IntentResult:
        """
        识别一句话的意图。

        Args:
            text: 用户原话

        Returns:
            IntentResult，raw_text 为原话
        """
        normalized = normalize_utterance(text)
        if not normalized:
            return IntentResult(intent=IntentType.UNKNOWN, confidence=0.0, raw_text=text or "")

        best_intent = IntentType.UNKNOWN
        best_score = 0.0
        for rule in self._rules.values():
            score = rule.pattern_score(normalized)
            if score == 0.0:
                score = rule.keyword_score(normalized)
            # 同分时优先级高者胜
            if score > best_score or (
                score == best_score and score > 0 and rule.priority > self._rules[best_intent].priority
            ):
                best_intent, best_score = rule.intent, score

        self._logger.debug(f"意图识别: '{normalized}' -> {best_intent.value} ({best_score:.2f})")
        return IntentResult(intent=best_intent, confidence=round(best_score, 4), raw_text=text)

    def classify_batch(self, texts: Iterable[str]) -> List[IntentResult]:
        """批量识别"""
        return [self.classify(text) for text in texts]

    def add_pattern(self, intent: IntentType, pattern: Union[str, Pattern]) -> None:
        """为意图追加正则"""
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        self._rule_for(intent).patterns.append(compiled)

    def add_keyword(self, intent: IntentType, keyword: str) -> None:
        """为意图追加关键词"""
        rule = self._rule_for(intent)
        if keyword and keyword not in rule.keywords:
            rule.keywords.append(keyword)

    def _rule_for(self, intent: IntentType) -> IntentRule:
        if intent == IntentType.UNKNOWN:
            raise ValueError("unknown 意图不能添加规则")
        rule = self._rules.get(intent)
        if rule is None:
            rule = IntentRule(intent=intent, priority=0)
            self._rules[intent] = rule
        return rule
