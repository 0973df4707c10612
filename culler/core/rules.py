# Copyright (c) 2025 Trae AI. All rights reserved.

from datetime import datetime
from typing import Iterable, List, Optional
from .conditions import evaluate_conditions
from .models import MediaItem, Rule, RuleAction, utc_now


def order_rules(rules: Iterable[Rule]) -> List[Rule]:
    """
    Rules are applied in name order; earlier rules take precedence.
    """
    return sorted(rules, key=lambda r: r.name)


def find_matching_rule(
    item: MediaItem, rules: Iterable[Rule], now: Optional[datetime] = None
) -> Optional[Rule]:
    """
    Returns the first enabled rule whose media type filter accepts the item
    and whose conditions all hold. Protected items never match.
    """
    if item.protected:
        return None

    now = now or utc_now()
    for rule in order_rules(rules):
        if not rule.enabled:
            continue
        if not rule.applies_to(item.type):
            continue
        if evaluate_conditions(item, rule.conditions, now):
            return rule
    return None


def match_rules(item: MediaItem, rules: Iterable[Rule], now: Optional[datetime] = None) -> Optional[RuleAction]:
    rule = find_matching_rule(item, rules, now)
    return rule.action if rule else None
