#!/usr/bin/env python3
"""
giketsu_etl.py — Scrape Shintoku council resolution PDFs (議決結果) into giketsu_index.json.

Walks the resolution index, collects the per-year pages (令和 /r7/, 平成 /h30/), downloads
every linked PDF, extracts its text with pdfplumber and parses the items with
giketsu_parser. One session per PDF.

Data sources:
  - https://www.shintoku-town.jp/gyousei/gikai/giketsu/        (index of year pages)
  - https://www.shintoku-town.jp/gyousei/gikai/giketsu/r7/     (year page, PDF links)

Output (public/data/giketsu_index.json):
  [{"pdfUrl", "year", "eraLabel", "sessionLabel", "sessionName", "sessionRange",
    "items": [{"caseNumber", "caseType", "num", "title", "decisionDate", "result"}]}]

Fetching is sequential with a fixed delay; a PDF that fails to download or parse is
logged and left out, the rest of the run continues.

Usage:
    python3 giketsu_etl.py                       # Full scrape
    python3 giketsu_etl.py --year 2025 --year 2024 --output /tmp/giketsu_r7r6.json
    python3 giketsu_etl.py --limit 3 --dry-run   # First 3 PDFs, print summary only
    python3 giketsu_etl.py --pdf giketsu.pdf     # Parse a local PDF and print items

Requirements:
    pip install requests beautifulsoup4 pdfplumber
"""

import argparse
import io
import json
import logging
import re
import sys
import time
from pathlib import Path
from urllib.parse import urljoin

import pdfplumber
import requests
from bs4 import BeautifulSoup

from giketsu_parser import dedupe_sessions, parse_pdf_text, sort_sessions, to_half_width

log = logging.getLogger('GiketsuETL')

# ── Paths ────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).parent.parent
OUTPUT_PATH = BASE_DIR / 'public' / 'data' / 'giketsu_index.json'

# ── Source ───────────────────────────────────────────────────────────
BASE_URL = 'https://www.shintoku-town.jp'
INDEX_URL = f'{BASE_URL}/gyousei/gikai/giketsu/'

HEADERS = {
    'User-Agent': 'ShintokuPlatformBot/1.0 (+https://github.com/shintoku-platform)',
}
HTML_TIMEOUT = 30
PDF_TIMEOUT = 120
RATE_LIMIT = 0.5  # seconds between requests

YEAR_PAGE_RE = re.compile(r'/giketsu/(r|h)(\d+)/$')
SESSION_LABEL_RE = re.compile(r'(定例|臨時)\s*第\s*(\d+)\s*回')

ERAS = {
    'r': ('令和', 2018),
    'h': ('平成', 1988),
}


def era_to_year(era_code, n):
    """('r', 7) → 2025, ('h', 30) → 2018."""
    return ERAS[era_code][1] + n


def era_from_url(year_url):
    """Year page URL → (eraLabel, year), or None if it is not a year page."""
    m = YEAR_PAGE_RE.search(year_url)
    if not m:
        return None
    code, n = m.group(1), int(m.group(2))
    return f"{ERAS[code][0]}{n}年", era_to_year(code, n)


# ── Fetching ─────────────────────────────────────────────────────────

def fetch_html(url):
    """GET a page and parse it. Raises requests.RequestException on failure."""
    time.sleep(RATE_LIMIT)
    resp = requests.get(url, headers=HEADERS, timeout=HTML_TIMEOUT)
    resp.raise_for_status()
    resp.encoding = resp.apparent_encoding or resp.encoding
    return BeautifulSoup(resp.text, 'html.parser')


def fetch_pdf_bytes(url):
    time.sleep(RATE_LIMIT)
    resp = requests.get(url, headers=HEADERS, timeout=PDF_TIMEOUT)
    resp.raise_for_status()
    return resp.content


def extract_pdf_text(data):
    """Text of every page, in page order, joined with newlines."""
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        return '\n'.join(page.extract_text() or '' for page in pdf.pages)


# ── Document discovery ───────────────────────────────────────────────

def parse_year_page_urls(soup, index_url=INDEX_URL):
    """Absolute URLs of the per-year pages linked from the index, in page order."""
    urls = []
    for link in soup.find_all('a', href=True):
        full = urljoin(index_url, link['href'])
        if YEAR_PAGE_RE.search(full) and full not in urls:
            urls.append(full)
    return urls


def derive_session_label(link_text, context_text, era_label):
    """定例第1回 / 臨時第2回 from the link or its surroundings, else a cleaned link text."""
    search = to_half_width(f"{link_text} {context_text}")
    m = SESSION_LABEL_RE.search(search)
    if m:
        return f"{m.group(1)}第{int(m.group(2))}回"
    label = re.sub(r'議決結果.*$', '', to_half_width(link_text)).replace(era_label, '').strip()
    return label or '不明'


def parse_pdf_entries(soup, year_url):
    """PDF links on a year page with their era/year/session metadata."""
    era = era_from_url(year_url)
    if not era:
        return []
    era_label, year = era

    entries = []
    seen = set()
    for link in soup.find_all('a', href=True):
        href = link['href'].strip()
        if not re.search(r'\.pdf$', href, re.I):
            continue
        pdf_url = urljoin(year_url, href)
        if pdf_url in seen:
            log.debug(f"  duplicate link {pdf_url}")
            continue
        seen.add(pdf_url)

        link_text = link.get_text(' ', strip=True)
        parent = link.find_parent(['li', 'tr', 'p', 'div'])
        context_text = parent.get_text(' ', strip=True) if parent else ''

        entries.append({
            'url': pdf_url,
            'eraLabel': era_label,
            'year': year,
            'sessionLabel': derive_session_label(link_text, context_text, era_label),
        })
    return entries


def collect_entries(index_url=INDEX_URL, years=None):
    """All PDF entries across year pages.

    The index page failing is fatal (raises); a year page failing only skips that year.
    """
    log.info(f"Fetching index: {index_url}")
    year_urls = parse_year_page_urls(fetch_html(index_url), index_url)
    log.info(f"Found {len(year_urls)} year pages")

    entries = []
    for year_url in year_urls:
        era = era_from_url(year_url)
        if years and era and era[1] not in years:
            continue
        log.info(f"  Fetching year page: {year_url}")
        try:
            soup = fetch_html(year_url)
        except requests.RequestException as e:
            log.error(f"  {year_url}: FAILED — {e}")
            continue
        found = parse_pdf_entries(soup, year_url)
        log.info(f"    {len(found)} PDFs")
        entries.extend(found)
    return entries


# ── Extraction ───────────────────────────────────────────────────────

def build_session(entry, raw_text):
    parsed = parse_pdf_text(raw_text)
    return {
        'pdfUrl': entry['url'],
        'year': entry['year'],
        'eraLabel': entry['eraLabel'],
        'sessionLabel': entry['sessionLabel'],
        'sessionName': f"{entry['eraLabel']}{entry['sessionLabel']}",
        'sessionRange': parsed['sessionRange'],
        'items': parsed['items'],
    }


def process_entry(entry):
    """Download, extract and parse one PDF into a session dict."""
    data = fetch_pdf_bytes(entry['url'])
    return build_session(entry, extract_pdf_text(data))


def run_pipeline(entries):
    """Process entries one by one. Returns (sessions, failures).

    A failure never stops the loop; it is logged and returned for the summary.
    """
    sessions = []
    failures = []
    for i, entry in enumerate(entries, 1):
        name = f"{entry['eraLabel']}{entry['sessionLabel']}"
        log.info(f"[{i}/{len(entries)}] {name}  {entry['url']}")
        try:
            session = process_entry(entry)
        except Exception as e:
            log.error(f"  {name}: FAILED — {e}")
            failures.append({'sessionName': name, 'url': entry['url'], 'error': str(e)})
            continue
        empty = sum(1 for item in session['items'] if not item['title'])
        log.info(f"  -> {len(session['items'])} items"
                 + (f" ({empty} without title)" if empty else ''))
        sessions.append(session)
    return sessions, failures


def build_session_index(sessions):
    """Presentation order plus cross-session key dedup. Returns (sessions, dropped)."""
    return dedupe_sessions(sort_sessions(sessions))


def write_session_index(path, sessions):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(sessions, f, ensure_ascii=False, indent=2)
        f.write('\n')
    log.info(f"Written: {path} ({len(sessions)} sessions)")


def parse_local_pdf(pdf_path):
    """Debug helper: parse a PDF on disk and return {'sessionRange', 'items'}."""
    return parse_pdf_text(extract_pdf_text(Path(pdf_path).read_bytes()))


# ── CLI ──────────────────────────────────────────────────────────────

def print_summary(entries, sessions, failures, dropped, output_path, dry_run):
    total_items = sum(len(s['items']) for s in sessions)
    empty_titles = sum(1 for s in sessions for item in s['items'] if not item['title'])

    print("\n" + "=" * 60)
    print("GIKETSU ETL COMPLETE")
    print("=" * 60)
    print(f"  PDFs found:        {len(entries)}")
    print(f"  Sessions parsed:   {len(sessions)}")
    print(f"  Failed:            {len(failures)}")
    print(f"  Items extracted:   {total_items}")
    print(f"  Items w/o title:   {empty_titles}")
    if dropped:
        print(f"  Duplicate items:   {dropped} (dropped)")
    for f in failures:
        print(f"    FAILED {f['sessionName']}: {f['error']}")
    if dry_run:
        print("(DRY RUN — no files written)")
    else:
        print(f"  Output:            {output_path}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Scrape Shintoku council resolution PDFs into giketsu_index.json'
    )
    parser.add_argument('--output', type=Path,
                        help=f'Output JSON path (default: {OUTPUT_PATH}; '
                             'required with --year/--limit unless --dry-run)')
    parser.add_argument('--index-url', default=INDEX_URL, help='Resolution index page')
    parser.add_argument('--year', type=int, action='append',
                        help='Only process this calendar year (repeatable)')
    parser.add_argument('--limit', type=int, help='Process at most N PDFs')
    parser.add_argument('--pdf', type=Path, help='Parse a local PDF, print items and exit')
    parser.add_argument('--dry-run', action='store_true',
                        help='Scrape and parse but do not write the output file')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
    )

    if args.pdf:
        try:
            parsed = parse_local_pdf(args.pdf)
        except Exception as e:
            log.error(f"{args.pdf}: {e}")
            return 1
        print(json.dumps(parsed, ensure_ascii=False, indent=2))
        return 0

    subset = bool(args.year) or args.limit is not None
    if subset and not args.dry_run and args.output is None:
        log.error("--year/--limit would replace the full index with a subset; "
                  "pass --output or --dry-run")
        return 1
    output = args.output or OUTPUT_PATH

    try:
        entries = collect_entries(args.index_url, set(args.year) if args.year else None)
    except requests.RequestException as e:
        log.error(f"Cannot reach resolution index {args.index_url}: {e}")
        return 1
    if args.limit is not None:
        entries = entries[:args.limit]

    sessions, failures = run_pipeline(entries)
    sessions, dropped = build_session_index(sessions)

    if not sessions:
        if entries:
            log.error("Every PDF failed; keeping the existing output untouched")
        else:
            log.error("No PDFs found; keeping the existing output untouched")
        print_summary(entries, sessions, failures, dropped, output, dry_run=True)
        return 1

    if not args.dry_run:
        write_session_index(output, sessions)
    print_summary(entries, sessions, failures, dropped, output, args.dry_run)
    return 0


if __name__ == '__main__':
    sys.exit(main())
