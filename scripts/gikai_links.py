#!/usr/bin/env python3
"""
gikai_links.py — Theme/issue links for council items: suggest → review → merge → build.

The link store is two flat CSV files with the same 4 columns:

    caseType,eraLabel,num,ref
    議案,令和7年,1,theme:finance

  - data/gikai_links_suggested.csv  regenerated on every `suggest` run (advisory)
  - data/gikai_links.csv            the curated master, only ever appended to

`build` compiles the master into public/data/gikai_links.json:

    {"令和7年-議案-1": ["issue:tuktuk", "theme:finance"], ...}

Lines starting with '#' and blank lines are ignored. The ref column may carry an
inline '# comment' (suggest writes score/matched keywords there for the reviewer).

Usage:
    python3 gikai_links.py suggest             # propose themes from giketsu_index.json
    python3 gikai_links.py merge               # append reviewed suggestions to the master
    python3 gikai_links.py build               # master CSV → gikai_links.json
    python3 gikai_links.py suggest --themes my_themes.json --verbose
"""

import argparse
import csv
import json
import logging
import os
import re
import sys
import tempfile
from collections import Counter
from pathlib import Path

from giketsu_parser import CASE_TYPE_PRIORITY, natural_key
from theme_classifier import DEFAULT_CONFIG, evaluate_title, load_config

log = logging.getLogger('GikaiLinks')

# ── Paths ────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / 'data'
PUBLIC_DATA_DIR = BASE_DIR / 'public' / 'data'

SESSIONS_PATH = PUBLIC_DATA_DIR / 'giketsu_index.json'
MASTER_CSV = DATA_DIR / 'gikai_links.csv'
SUGGESTED_CSV = DATA_DIR / 'gikai_links_suggested.csv'
OUTPUT_JSON = PUBLIC_DATA_DIR / 'gikai_links.json'

COLUMNS = ['caseType', 'eraLabel', 'num', 'ref']
HEADER = ','.join(COLUMNS)
VALID_REF = re.compile(r'^(theme|issue):.+$')

SUGGEST_PREAMBLE = [
    '# Auto-generated suggestions (overwritten on every run).',
    '# Review, then run `gikai_links.py merge` to append to data/gikai_links.csv.',
    '# score and matched are reviewer notes only; they are ignored on import.',
]


class LinkCsvError(ValueError):
    """Invalid content in a link CSV file."""

    def __init__(self, label, lineno, msg):
        self.label = label
        self.lineno = lineno
        where = f"{label} line {lineno}" if lineno else label
        super().__init__(f"{where}: {msg}")


# ── CSV handling ─────────────────────────────────────────────────────

def link_key(era_label, case_type, num):
    """Natural key shared with giketsu_index.json consumers."""
    return f"{era_label}-{case_type}-{num}"


def pair_key(row):
    return (row['eraLabel'], row['caseType'], row['num'], row['ref'])


def row_sort_key(row):
    """eraLabel, num, then 議案 before 意見案, then ref."""
    priority = CASE_TYPE_PRIORITY.get(row['caseType'], len(CASE_TYPE_PRIORITY))
    return (natural_key(row['eraLabel']), row['num'], priority, row['caseType'], row['ref'])


def strip_comment(value):
    return re.sub(r'\s*#.*$', '', value).strip()


def validate_fields(fields, col_idx):
    """Return (row, errors) for one split CSV line."""
    def get(name):
        i = col_idx[name]
        return fields[i].strip() if i < len(fields) else ''

    case_type = get('caseType')
    era_label = get('eraLabel')
    num_str = get('num')
    ref = strip_comment(get('ref'))

    errors = []
    if len(fields) <= max(col_idx.values()):
        errors.append(f"expected {max(col_idx.values()) + 1} columns, got {len(fields)}")
    if not case_type:
        errors.append('caseType is empty')
    if not era_label:
        errors.append('eraLabel is empty')
    num = None
    if re.fullmatch(r'\d+', num_str) and int(num_str) > 0:
        num = int(num_str)
    else:
        errors.append(f'num must be a positive integer, got: "{num_str}"')
    if not VALID_REF.match(ref):
        errors.append(f'ref must start with "theme:" or "issue:", got: "{ref}"')

    if errors:
        return None, errors
    return {'caseType': case_type, 'eraLabel': era_label, 'num': num, 'ref': ref}, []


def effective_lines(text):
    """(lineno, stripped line) for every line that is not blank or a comment."""
    return [
        (lineno, line.strip())
        for lineno, line in enumerate(text.splitlines(), 1)
        if line.strip() and not line.strip().startswith('#')
    ]


def split_header(line):
    return [c.strip() for c in next(csv.reader([line]))]


def header_columns(text):
    """Column names in the order the file's header lists them, or None if it has none."""
    effective = effective_lines(text)
    if not effective:
        return None
    return split_header(effective[0][1])


def parse_link_csv(text, label, strict=False):
    """Parse link CSV text into rows.

    The header is the first non-comment line. strict=True raises LinkCsvError on the
    first invalid row; otherwise invalid rows are logged and skipped.
    Returns (rows, invalid_count). A missing or incomplete header always raises.
    """
    effective = effective_lines(text)
    if not effective:
        return [], 0

    header_lineno, header_line = effective[0]
    header = split_header(header_line)
    missing = [c for c in COLUMNS if c not in header]
    if missing:
        raise LinkCsvError(label, header_lineno,
                           f"header must contain {HEADER} (missing {', '.join(missing)}), "
                           f"found: {header_line}")
    col_idx = {c: header.index(c) for c in COLUMNS}

    rows = []
    invalid = 0
    for lineno, line in effective[1:]:
        fields = next(csv.reader([line]))
        row, errors = validate_fields(fields, col_idx)
        if errors:
            if strict:
                raise LinkCsvError(label, lineno, '; '.join(errors))
            log.warning(f"{label} line {lineno}: {'; '.join(errors)} -> skipped")
            invalid += 1
            continue
        row['line'] = lineno
        rows.append(row)
    return rows, invalid


def read_link_csv(path, strict=False):
    path = Path(path)
    return parse_link_csv(path.read_text(encoding='utf-8-sig'), path.name, strict=strict)


def format_row(row, columns=COLUMNS):
    """One CSV line with the fields in `columns` order; unknown columns stay empty."""
    return ','.join(str(row.get(c, '')) for c in columns)


def write_text_atomic(path, text):
    """Write to a temp file in the same directory, then rename over the target."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8', newline='\n') as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


# ── Suggest ──────────────────────────────────────────────────────────

def suggest_links(sessions, existing_pairs=frozenset(), config=DEFAULT_CONFIG):
    """Propose theme refs for every titled item in the session index.

    Pairs already in existing_pairs (the master) are counted as skipped.
    Returns (rows, stats); rows carry 'score' and 'matched' for the reviewer.
    """
    rows = []
    seen = set()
    skipped = set()
    multi_theme = set()
    theme_counts = Counter()
    score1_counts = Counter()
    weak_counts = Counter()
    weak_theme_counts = Counter()
    stats = {
        'empty_title': 0,
        'below_threshold': 0,
        'allowlist_excluded': 0,
        'weak_excluded': 0,
    }

    for session in sessions:
        if not isinstance(session, dict) or not isinstance(session.get('items'), list):
            continue
        era_label = session.get('eraLabel', '')

        for item in session['items']:
            title = (item.get('title') or '').strip()
            if not title:
                stats['empty_title'] += 1
                continue

            evaluation = evaluate_title(title, config)
            for candidate, reason in evaluation['excluded']:
                if reason in ('allowlist', 'weak'):
                    stats['allowlist_excluded'] += 1
                if reason == 'weak':
                    stats['weak_excluded'] += 1
                    weak_theme_counts[candidate['themeId']] += 1
                    for kw in candidate['matched']:
                        weak_counts[kw] += 1

            winners = evaluation['themes']
            if not winners:
                if evaluation['excluded']:
                    stats['below_threshold'] += 1
                continue
            if len(winners) == 2:
                multi_theme.add((era_label, item['caseType'], item['num']))

            for candidate in winners:
                row = {
                    'caseType': item['caseType'],
                    'eraLabel': era_label,
                    'num': item['num'],
                    'ref': f"theme:{candidate['themeId']}",
                    'score': candidate['score'],
                    'matched': candidate['matched'],
                }
                key = pair_key(row)
                if key in seen:
                    continue
                seen.add(key)
                if key in existing_pairs:
                    skipped.add(key)
                    continue
                rows.append(row)
                theme_counts[candidate['themeId']] += 1
                if candidate['score'] == 1:
                    score1_counts[candidate['themeId']] += 1

    rows.sort(key=row_sort_key)
    stats.update({
        'proposed': len(rows),
        'skipped_existing': len(skipped),
        'multi_theme': len(multi_theme),
        'theme_counts': dict(theme_counts),
        'score1_counts': dict(score1_counts),
        'weak_keyword_counts': dict(weak_counts),
        'weak_theme_counts': dict(weak_theme_counts),
    })
    return rows, stats


def format_suggestions(rows):
    lines = SUGGEST_PREAMBLE + [HEADER]
    for row in rows:
        lines.append(f"{format_row(row)}  # score:{row['score']} "
                     f"matched:[{'/'.join(row['matched'])}]")
    return '\n'.join(lines) + '\n'


def load_sessions(path):
    with open(path, encoding='utf-8') as f:
        sessions = json.load(f)
    if not isinstance(sessions, list):
        raise ValueError(f"{path}: expected a JSON array of sessions")
    return sessions


def run_suggest(sessions_path, master_path, suggested_path, config=DEFAULT_CONFIG):
    sessions = load_sessions(sessions_path)

    existing = set()
    if Path(master_path).exists():
        master_rows, _ = read_link_csv(master_path)
        existing = {pair_key(r) for r in master_rows}

    rows, stats = suggest_links(sessions, existing, config)
    write_text_atomic(suggested_path, format_suggestions(rows))
    log.info(f"Written: {suggested_path} ({len(rows)} suggestions)")
    return stats


def health_breakdown(stats):
    """Split proposed health links by how they qualified, and what the weak list removed."""
    total = stats['theme_counts'].get('health', 0)
    strong = stats['score1_counts'].get('health', 0)
    weak = stats['weak_theme_counts'].get('health', 0)
    return {
        'score1_strong': strong,
        'score1_weak_excluded': weak,
        'score2_plus': total - strong,
        'before': total + weak,
        'after': total,
    }


def print_suggest_summary(stats):
    print("\n" + "=" * 60)
    print("LINK SUGGESTIONS")
    print("=" * 60)
    print(f"  Proposed:              {stats['proposed']}")
    print(f"  Below threshold:       {stats['below_threshold']}")
    print(f"  Allow-list excluded:   {stats['allowlist_excluded']}")
    print(f"  Two-theme items:       {stats['multi_theme']}")
    print(f"  Skipped (in master):   {stats['skipped_existing']}")
    if stats['empty_title']:
        print(f"  Skipped (no title):    {stats['empty_title']}")
    print("  By theme (proposed / of which score=1):")
    for theme_id, count in sorted(stats['theme_counts'].items(), key=lambda kv: -kv[1]):
        s1 = stats['score1_counts'].get(theme_id, 0)
        s1_str = f" (score=1: {s1})" if s1 else ''
        print(f"    {theme_id:<12}: {count}{s1_str}")
    health = health_breakdown(stats)
    detail = ' / '.join(f"{k}:{v}" for k, v in sorted(stats['weak_keyword_counts'].items()))
    print("  Health breakdown:")
    print(f"    score=1 strong:      {health['score1_strong']}")
    print(f"    score=1 weak only:   {health['score1_weak_excluded']}"
          + (f"  ({detail})" if detail else '') + "  (excluded)")
    print(f"    score>=2:            {health['score2_plus']}")
    print(f"    before -> after:     {health['before']} -> {health['after']}"
          f"  (-{health['score1_weak_excluded']})")
    print("\nNext: review the suggestions file, then run `gikai_links.py merge`.")


# ── Merge ────────────────────────────────────────────────────────────

def merge_links(suggested_path, master_path):
    """Append suggestion rows that the master does not have yet.

    The master text is kept as-is; new rows go at the end, sorted. Returns a dict
    with appended/skipped/invalid counts.
    """
    suggested_path = Path(suggested_path)
    master_path = Path(master_path)
    if not suggested_path.exists():
        raise FileNotFoundError(f"{suggested_path} not found (run `gikai_links.py suggest` first)")

    if master_path.exists():
        master_text = master_path.read_text(encoding='utf-8-sig')
    else:
        log.info(f"{master_path} not found, starting a new master")
        master_text = HEADER + '\n'

    master_rows, master_invalid = parse_link_csv(master_text, master_path.name)
    if master_invalid:
        log.warning(f"{master_path.name}: {master_invalid} invalid rows ignored for dedup")
    existing = {pair_key(r) for r in master_rows}

    sug_rows, invalid = read_link_csv(suggested_path)

    to_append = []
    skipped = 0
    for row in sug_rows:
        key = pair_key(row)
        if key in existing:
            skipped += 1
            continue
        existing.add(key)
        to_append.append(row)

    if to_append or not master_path.exists():
        to_append.sort(key=row_sort_key)
        if master_text and not master_text.endswith('\n'):
            master_text += '\n'
        columns = header_columns(master_text)
        if columns is None:
            master_text += HEADER + '\n'
            columns = COLUMNS
        new_text = master_text + ''.join(format_row(r, columns) + '\n' for r in to_append)
        write_text_atomic(master_path, new_text)

    return {'appended': len(to_append), 'skipped': skipped, 'invalid': invalid}


# ── Build ────────────────────────────────────────────────────────────

def build_link_map(rows):
    """Rows → {key: sorted refs}, keys sorted."""
    link_map = {}
    for row in rows:
        key = link_key(row['eraLabel'], row['caseType'], row['num'])
        link_map.setdefault(key, set()).add(row['ref'])
    return {key: sorted(link_map[key]) for key in sorted(link_map)}


def build_links(master_path, output_path):
    """Compile the master CSV. Any invalid row raises LinkCsvError before writing."""
    rows, _ = read_link_csv(master_path, strict=True)
    link_map = build_link_map(rows)
    write_text_atomic(output_path, json.dumps(link_map, ensure_ascii=False, indent=2) + '\n')
    return link_map


# ── CLI ──────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Suggest, merge and build theme/issue links for council items'
    )
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    p_suggest = sub.add_parser('suggest', help='Propose theme links from the session index')
    p_suggest.add_argument('--sessions', type=Path, default=SESSIONS_PATH,
                           help=f'Session index JSON (default: {SESSIONS_PATH})')
    p_suggest.add_argument('--master', type=Path, default=MASTER_CSV)
    p_suggest.add_argument('--suggested', type=Path, default=SUGGESTED_CSV)
    p_suggest.add_argument('--themes', type=Path,
                           help='JSON file replacing the built-in theme keyword tables')

    p_merge = sub.add_parser('merge', help='Append reviewed suggestions to the master CSV')
    p_merge.add_argument('--suggested', type=Path, default=SUGGESTED_CSV)
    p_merge.add_argument('--master', type=Path, default=MASTER_CSV)

    p_build = sub.add_parser('build', help='Compile the master CSV into gikai_links.json')
    p_build.add_argument('--master', type=Path, default=MASTER_CSV)
    p_build.add_argument('--output', type=Path, default=OUTPUT_JSON)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
    )

    if args.command == 'suggest':
        try:
            config = load_config(args.themes) if args.themes else DEFAULT_CONFIG
            stats = run_suggest(args.sessions, args.master, args.suggested, config)
        except (OSError, ValueError) as e:
            log.error(f"suggest failed: {e}")
            return 1
        print_suggest_summary(stats)
        return 0

    if args.command == 'merge':
        try:
            result = merge_links(args.suggested, args.master)
        except (OSError, LinkCsvError) as e:
            log.error(f"merge failed: {e}")
            return 1
        print(f"\n{args.master}")
        print(f"  Appended:            {result['appended']}")
        print(f"  Skipped (duplicate): {result['skipped']}")
        if result['invalid']:
            print(f"  Skipped (invalid):   {result['invalid']}")
        if result['appended']:
            print("\nNext: run `gikai_links.py build`.")
        else:
            print("\nNothing appended. Check the suggestions file for new rows.")
        return 0

    try:
        link_map = build_links(args.master, args.output)
    except LinkCsvError as e:
        log.error(f"build aborted, nothing written: {e}")
        return 1
    except OSError as e:
        log.error(f"build failed: {e}")
        return 1
    ref_count = sum(len(refs) for refs in link_map.values())
    print(f"gikai_links.json: {len(link_map)} keys, {ref_count} refs -> {args.output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
