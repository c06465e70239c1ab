#!/usr/bin/env python3
"""
giketsu_parser.py — Turn extracted 議決結果 PDF text into structured items.

The resolution PDFs published by the Shintoku town council have no machine-readable
structure. After text extraction each page is a flat run of lines in which two kinds
of block repeat:

    [result block]  議案第1号 3月14日 原案可決     ← case number + date + result
    [title block]   令和7年度新得町一般会計予算   ← titles, same order as results

The parser normalizes the text, splits it into (results, title lines) segments with a
small state machine, rejoins wrapped title lines, and pairs results with titles by
position. Everything here is pure: same text in, same items out.

Usage (library):
    from giketsu_parser import parse_pdf_text
    parsed = parse_pdf_text(raw_text)
    parsed['sessionRange'], parsed['items']
"""

import logging
import re

log = logging.getLogger('GiketsuParser')

# ── Patterns ─────────────────────────────────────────────────────────
CASE_RE = re.compile(r'(議案|意見案)\s*第\s*(\d+)\s*号')
DATE_RE = re.compile(r'(\d{1,2})\s*月\s*(\d{1,2})\s*日')

# Order matters — first match wins, so 不採択 must come before 採択
RESULT_KEYWORDS = [
    '原案可決', '修正可決', '否決', '撤回',
    '継続審査', '委員会付託', '不採択', '採択', '廃案', '取り下げ',
]

# Lines that share the page with the item table but are never part of a title
NOISE_PATTERNS = [
    re.compile(r'^件\s*名$'),                              # bare "件 名" header
    re.compile(r'^議案番号\s'),                             # column header
    re.compile(r'^(定例|臨時)第\d+回\s+\d+月\d+日'),          # session summary
    re.compile(r'^新\s+議\s+号'),                           # document serial
    re.compile(r'^令和\s+\d+\s+年'),                        # spaced banner date
    re.compile(r'^新\s+得\s+町\s+長'),                       # addressee
    re.compile(r'^新得町議会議長\s'),                        # signature
    re.compile(r'新得町議会議決結果報告'),                    # document title
    re.compile(r'^\d+月\d+日\s*[～~]'),                     # recess period
    re.compile(r'^(招集月日|開会月日|閉会月日|会議日数|休会月日)'),  # period headers
]

SESSION_RANGE_RE = re.compile(r'(定例|臨時)第\d+回\s+(\d+月\d+日)\s+(\d+月\d+日)')
SESSION_RANGE_FALLBACK_RE = re.compile(r'会\s*期\s+([^\n]+)')

# Typical endings of a council item title
TITLE_SUFFIXES = (
    'について', '予算', '件', '）', ')', '意見書', 'こと', 'ため',
    '同意', 'よる', 'など', '承認', '承諾', '条例',
)
TITLE_MAX_LENGTH = 120

CASE_TYPE_PRIORITY = {'議案': 0, '意見案': 1}

INIT, IN_RESULTS, IN_TITLES = 'INIT', 'IN_RESULTS', 'IN_TITLES'


# ── Normalization ────────────────────────────────────────────────────

def to_half_width(text):
    """Full-width ASCII letters/digits → half-width, ideographic space → ' '."""
    return re.sub(
        r'[Ａ-Ｚａ-ｚ０-９]',
        lambda m: chr(ord(m.group(0)) - 0xFEE0),
        text,
    ).replace('　', ' ')


def normalize_lines(raw_text):
    """Split extracted text into trimmed, whitespace-collapsed, non-empty lines."""
    lines = []
    for line in to_half_width(raw_text).splitlines():
        line = re.sub(r'\s+', ' ', line).strip()
        if line:
            lines.append(line)
    return lines


# ── Line classification ─────────────────────────────────────────────

def find_result_keyword(line):
    for kw in RESULT_KEYWORDS:
        if kw in line:
            return kw
    return None


def is_result_line(line):
    """A result line carries a case number, a month/day date and a result keyword."""
    return bool(
        CASE_RE.search(line)
        and DATE_RE.search(line)
        and find_result_keyword(line)
    )


def parse_result_line(line):
    """Parse a result line into a dict. Returns None if the line is not one."""
    if not is_result_line(line):
        return None
    cm = CASE_RE.search(line)
    dm = DATE_RE.search(line)
    return {
        'caseType': cm.group(1),
        'num': int(cm.group(2)),
        'decisionDate': f"{int(dm.group(1))}月{int(dm.group(2))}日",
        'result': find_result_keyword(line),
    }


def is_title_candidate(line):
    """False for headers, banners, signatures and other page boilerplate."""
    return not any(p.search(line) for p in NOISE_PATTERNS)


# ── Segmentation ─────────────────────────────────────────────────────

def segment_lines(lines):
    """Partition normalized lines into ordered segments.

    Each segment is {'results': [...], 'titleLines': [...]}. A result line seen
    after title lines closes the current segment. Lines before the first result
    line are dropped: with no result to attach to they are always page banners.
    """
    segments = []
    results = []
    title_lines = []
    state = INIT

    for line in lines:
        parsed = parse_result_line(line)
        if parsed:
            if state == IN_TITLES:
                segments.append({'results': results, 'titleLines': title_lines})
                results = []
                title_lines = []
            state = IN_RESULTS
            results.append(parsed)
        else:
            if state == IN_RESULTS:
                state = IN_TITLES
            if state == IN_TITLES and is_title_candidate(line):
                title_lines.append(line)

    if results or title_lines:
        segments.append({'results': results, 'titleLines': title_lines})

    return segments


# ── Title reconstruction ─────────────────────────────────────────────

def reconstruct_titles(lines, suffixes=TITLE_SUFFIXES, max_length=TITLE_MAX_LENGTH):
    """Rejoin title lines that the PDF layout wrapped at the page width.

    Lines are appended to a buffer until it ends with a known title ending or grows
    past max_length. Whatever is left at the end becomes the last title.
    """
    titles = []
    current = ''
    for line in lines:
        current += line
        if current.endswith(suffixes) or len(current) > max_length:
            titles.append(current.strip())
            current = ''
    if current.strip():
        titles.append(current.strip())
    return titles


# ── Assembly ─────────────────────────────────────────────────────────

def case_sort_key(item):
    return (CASE_TYPE_PRIORITY.get(item['caseType'], len(CASE_TYPE_PRIORITY)), item['num'])


def assemble_items(segments, suffixes=TITLE_SUFFIXES, max_length=TITLE_MAX_LENGTH):
    """Pair each segment's results with its titles by position.

    Results without a matching title get an empty title. A repeated
    (caseType, num) keeps its first occurrence in document order.
    """
    items = []
    seen = set()

    for idx, seg in enumerate(segments):
        titles = reconstruct_titles(seg['titleLines'], suffixes, max_length)
        if len(titles) != len(seg['results']):
            log.debug(f"  segment {idx}: {len(seg['results'])} results, "
                      f"{len(titles)} titles")

        for i, res in enumerate(seg['results']):
            key = (res['caseType'], res['num'])
            if key in seen:
                log.warning(f"  duplicate {res['caseType']}第{res['num']}号 dropped")
                continue
            seen.add(key)
            items.append({
                'caseNumber': f"{res['caseType']}第{res['num']}号",
                'caseType': res['caseType'],
                'num': res['num'],
                'title': titles[i] if i < len(titles) else '',
                'decisionDate': res['decisionDate'],
                'result': res['result'],
            })

    items.sort(key=case_sort_key)
    return items


def extract_session_range(lines, normalized_text=''):
    """Opening～closing dates from the session summary line, or the 会期 line."""
    for line in lines:
        m = SESSION_RANGE_RE.search(line)
        if m:
            return f"{m.group(2)}～{m.group(3)}"
    m = SESSION_RANGE_FALLBACK_RE.search(normalized_text)
    if m:
        return m.group(1).strip()
    return ''


def parse_pdf_text(raw_text):
    """Full text of one resolution PDF → {'sessionRange': str, 'items': [...]}."""
    lines = normalize_lines(raw_text)
    segments = segment_lines(lines)
    return {
        'sessionRange': extract_session_range(lines, to_half_width(raw_text)),
        'items': assemble_items(segments),
    }


# ── Session ordering ─────────────────────────────────────────────────

def natural_key(text):
    """Compare digit runs numerically so 定例第2回 sorts before 定例第10回."""
    return [(0, int(part), '') if part.isdigit() else (1, 0, part)
            for part in re.split(r'(\d+)', text) if part]


def sort_sessions(sessions):
    """Year descending, then label ascending; label text compares by codepoint."""
    return sorted(sessions, key=lambda s: (-s['year'], natural_key(s['sessionLabel'])))


def dedupe_sessions(sessions):
    """Drop items whose (eraLabel, caseType, num) already appeared in an earlier session.

    Sessions must already be in presentation order. Returns (sessions, dropped_count);
    session dicts are copied, never modified in place.
    """
    seen = set()
    dropped = 0
    result = []
    for session in sessions:
        items = []
        for item in session['items']:
            key = (session['eraLabel'], item['caseType'], item['num'])
            if key in seen:
                log.warning(f"  {session['sessionName']}: duplicate "
                            f"{item['caseNumber']} already in {session['eraLabel']}, dropped")
                dropped += 1
                continue
            seen.add(key)
            items.append(item)
        result.append(dict(session, items=items))
    return result, dropped
