#!/usr/bin/env python3
"""
theme_classifier.py — Keyword scoring of council item titles against policy themes.

Each theme has a keyword list. A title scores one point per keyword it contains.
Acceptance rules:
  - score >= 2 is always viable
  - score == 1 is viable only for themes with threshold 1, and only when the matched
    keyword is in that theme's score-1 allow-list
  - weak keywords (e.g. 健康) never justify a score-1 acceptance on their own
  - finance uses threshold 2 (generic words like 税 or 予算 appear everywhere)

The best theme is emitted; a second one only when tied on score. Ties are broken
by THEME_PRIORITY.

The rule tables live in a ThemeConfig so callers (and tests) can swap them.
"""

import json
from collections import namedtuple
from types import MappingProxyType

THEME_KEYWORDS = {
    'finance': [
        '予算', '決算', '補正', '財政', '基金', '起債', '債務',
        '交付税', '税', '歳入', '歳出', '入札',
    ],
    'agriculture': [
        '農', '農業', '畑', '酪農', '畜産', '家畜', '飼料',
        '乳', '牛', '馬鈴薯', '甜菜', 'ビート', '収穫', '農地',
    ],
    'tourism': [
        '観光', '宿泊', '温泉', '道の駅', 'キャンプ', 'イベント',
        '誘客', '交流', '滞在', 'プロモーション',
    ],
    'health': [
        '福祉', '介護', '医療', '健診', '健康', '子育て',
        '保育', '教育', '学校', '給食',
    ],
    'community': [
        '地域', '自治', '町内会', '防災', '消防', '移住',
        '定住', '空き家', '交通', '公共交通', 'まちづくり',
    ],
}

SCORE_THRESHOLD = {
    'finance': 2,
    'agriculture': 1,
    'tourism': 1,
    'health': 1,
    'community': 1,
}
DEFAULT_THRESHOLD = 2

# Keywords strong enough to accept a theme on a single match
SCORE1_ALLOWLIST = {
    'agriculture': ['農業', '畜産', '酪農', '収穫', '農地', '家畜', '飼料'],
    'tourism': ['観光', '宿泊', '滞在', '温泉'],
    'health': ['医療', '介護', '福祉', '保育'],
    'community': ['定住', '移住', '防災', '消防', '町内会', '地域', 'まちづくり'],
}

# Generic words: only count once another keyword of the same theme matched
SCORE1_WEAK = {
    'health': ['健康', '教育', '学校'],
}

THEME_PRIORITY = ['finance', 'health', 'community', 'agriculture', 'tourism']

ThemeConfig = namedtuple('ThemeConfig', ['keywords', 'thresholds', 'allowlist', 'weak', 'priority'])


def _freeze(table):
    return MappingProxyType({k: tuple(v) for k, v in table.items()})


def make_config(keywords, thresholds=None, allowlist=None, weak=None, priority=None):
    """Build an immutable ThemeConfig from plain dicts/lists."""
    return ThemeConfig(
        keywords=_freeze(keywords),
        thresholds=MappingProxyType(dict(thresholds or {})),
        allowlist=_freeze(allowlist or {}),
        weak=_freeze(weak or {}),
        priority=tuple(priority if priority is not None else keywords),
    )


DEFAULT_CONFIG = make_config(
    THEME_KEYWORDS, SCORE_THRESHOLD, SCORE1_ALLOWLIST, SCORE1_WEAK, THEME_PRIORITY,
)


def load_config(path):
    """Read a ThemeConfig from JSON with keys keywords/thresholds/allowlist/weak/priority."""
    with open(path, encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data.get('keywords'), dict) or not data['keywords']:
        raise ValueError(f"{path}: 'keywords' must be a non-empty object")
    return make_config(
        data['keywords'],
        data.get('thresholds'),
        data.get('allowlist'),
        data.get('weak'),
        data.get('priority'),
    )


def _priority_rank(theme_id, config):
    try:
        return config.priority.index(theme_id)
    except ValueError:
        return len(config.priority)


def score_themes(title, config=DEFAULT_CONFIG):
    """All themes with at least one keyword hit, best first."""
    results = []
    for theme_id, keywords in config.keywords.items():
        matched = [kw for kw in keywords if kw in title]
        if matched:
            results.append({'themeId': theme_id, 'score': len(matched), 'matched': matched})
    results.sort(key=lambda c: (-c['score'], _priority_rank(c['themeId'], config)))
    return results


def exclusion_reason(candidate, config=DEFAULT_CONFIG):
    """None if the candidate is viable, else 'threshold', 'weak' or 'allowlist'."""
    theme_id, score, matched = candidate['themeId'], candidate['score'], candidate['matched']
    threshold = config.thresholds.get(theme_id, DEFAULT_THRESHOLD)
    if score >= max(threshold, 2):
        return None
    if score < threshold:
        return 'threshold'
    # score == 1 == threshold
    allowed = config.allowlist.get(theme_id, ())
    if any(kw in allowed for kw in matched):
        return None
    if any(kw in config.weak.get(theme_id, ()) for kw in matched):
        return 'weak'
    return 'allowlist'


def evaluate_title(title, config=DEFAULT_CONFIG):
    """Classify a title and keep the rejected candidates for reporting.

    Returns {'themes': [...up to two candidates...], 'excluded': [(candidate, reason), ...]}.
    """
    viable = []
    excluded = []
    for candidate in score_themes(title, config):
        reason = exclusion_reason(candidate, config)
        if reason is None:
            viable.append(candidate)
        else:
            excluded.append((candidate, reason))

    themes = viable[:1]
    if len(viable) > 1 and viable[1]['score'] == viable[0]['score']:
        themes.append(viable[1])
    return {'themes': themes, 'excluded': excluded}


def classify_title(title, config=DEFAULT_CONFIG):
    """Zero, one or two theme candidates ({'themeId', 'score', 'matched'}) for a title."""
    if not title or not title.strip():
        return []
    return evaluate_title(title, config)['themes']
