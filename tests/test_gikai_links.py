import json

import pytest

from gikai_links import (
    HEADER,
    LinkCsvError,
    build_link_map,
    build_links,
    format_suggestions,
    health_breakdown,
    main,
    merge_links,
    parse_link_csv,
    print_suggest_summary,
    row_sort_key,
    run_suggest,
    suggest_links,
)

MASTER = """# curated links
caseType,eraLabel,num,ref

議案,令和7年,1,theme:finance
議案,令和7年,5,issue:tuktuk  # added by hand
"""


def test_parse_link_csv_skips_comments_and_strips_inline_comment():
    rows, invalid = parse_link_csv(MASTER, 'master.csv')
    assert invalid == 0
    assert [(r['caseType'], r['eraLabel'], r['num'], r['ref'], r['line']) for r in rows] == [
        ('議案', '令和7年', 1, 'theme:finance', 4),
        ('議案', '令和7年', 5, 'issue:tuktuk', 5),
    ]


def test_parse_link_csv_resolves_column_order_from_header():
    rows, _ = parse_link_csv('ref,num,eraLabel,caseType\ntheme:health,3,令和6年,意見案\n', 'x.csv')
    assert rows[0]['caseType'] == '意見案'
    assert rows[0]['num'] == 3


def test_parse_link_csv_lenient_skips_invalid_rows():
    text = HEADER + '\n議案,令和7年,0,theme:x\n議案,,2,theme:x\n議案,令和7年,3,bogus\n議案,令和7年,4,theme:ok\n'
    rows, invalid = parse_link_csv(text, 'suggested.csv')
    assert invalid == 3
    assert [r['num'] for r in rows] == [4]


def test_parse_link_csv_strict_reports_line_number():
    text = HEADER + '\n議案,令和7年,1,theme:ok\n議案,令和7年,abc,theme:ok\n'
    with pytest.raises(LinkCsvError) as exc:
        parse_link_csv(text, 'master.csv', strict=True)
    assert exc.value.lineno == 3
    assert 'line 3' in str(exc.value)


def test_parse_link_csv_bad_header():
    with pytest.raises(LinkCsvError):
        parse_link_csv('caseType,num,ref\n議案,1,theme:x\n', 'master.csv')


def test_suggest_links(sample_sessions):
    existing = {('令和7年', '議案', 1, 'theme:finance')}
    rows, stats = suggest_links(sample_sessions, existing)
    assert [(r['num'], r['ref']) for r in rows] == [
        (2, 'theme:community'),
        (2, 'theme:health'),
    ]
    assert stats['proposed'] == 2
    assert stats['skipped_existing'] == 1
    assert stats['empty_title'] == 1
    assert stats['multi_theme'] == 1
    assert stats['weak_excluded'] == 1
    assert stats['weak_keyword_counts'] == {'健康': 1}
    assert stats['below_threshold'] == 1


def test_format_suggestions_is_readable_by_the_csv_parser(sample_sessions):
    rows, _ = suggest_links(sample_sessions)
    text = format_suggestions(rows)
    assert text.startswith('#')
    assert '議案,令和7年,1,theme:finance  # score:2 matched:[予算/補正]' in text
    parsed, invalid = parse_link_csv(text, 'suggested.csv')
    assert invalid == 0
    assert [(r['num'], r['ref']) for r in parsed] == [(r['num'], r['ref']) for r in rows]


def test_health_breakdown_counts_weak_exclusions(sample_sessions, capsys):
    _, stats = suggest_links(sample_sessions)
    assert health_breakdown(stats) == {
        'score1_strong': 1,
        'score1_weak_excluded': 1,
        'score2_plus': 0,
        'before': 2,
        'after': 1,
    }

    print_suggest_summary(stats)
    out = capsys.readouterr().out
    assert 'score=1 weak only:   1  (健康:1)  (excluded)' in out
    assert 'before -> after:     2 -> 1  (-1)' in out


def test_row_sort_key_orders_bills_before_opinion_bills():
    rows = [
        {'caseType': 'その他', 'eraLabel': '令和7年', 'num': 2, 'ref': 'theme:health'},
        {'caseType': '意見案', 'eraLabel': '令和7年', 'num': 2, 'ref': 'theme:health'},
        {'caseType': '議案', 'eraLabel': '令和7年', 'num': 2, 'ref': 'theme:health'},
        {'caseType': '意見案', 'eraLabel': '令和7年', 'num': 1, 'ref': 'theme:health'},
    ]
    assert [(r['caseType'], r['num']) for r in sorted(rows, key=row_sort_key)] == [
        ('意見案', 1), ('議案', 2), ('意見案', 2), ('その他', 2),
    ]


def test_run_suggest_regenerates_file(tmp_path, sample_sessions):
    sessions_path = tmp_path / 'giketsu_index.json'
    sessions_path.write_text(json.dumps(sample_sessions, ensure_ascii=False), encoding='utf-8')
    suggested = tmp_path / 'suggested.csv'
    suggested.write_text('stale content\n', encoding='utf-8')

    stats = run_suggest(sessions_path, tmp_path / 'missing_master.csv', suggested)

    assert stats['proposed'] == 3
    assert 'stale content' not in suggested.read_text(encoding='utf-8')


def test_run_suggest_rejects_non_array_index(tmp_path):
    sessions_path = tmp_path / 'giketsu_index.json'
    sessions_path.write_text('{}', encoding='utf-8')
    with pytest.raises(ValueError):
        run_suggest(sessions_path, tmp_path / 'master.csv', tmp_path / 'suggested.csv')


def _write(path, text):
    path.write_text(text, encoding='utf-8')
    return path


def test_merge_skips_pairs_already_in_master(tmp_path):
    master = _write(tmp_path / 'master.csv', MASTER)
    suggested = _write(tmp_path / 'suggested.csv',
                       '# header comment\n' + HEADER + '\n議案,令和7年,1,theme:finance  # score:2\n')

    result = merge_links(suggested, master)

    assert result == {'appended': 0, 'skipped': 1, 'invalid': 0}
    assert master.read_text(encoding='utf-8') == MASTER


def test_merge_appends_sorted_and_is_idempotent(tmp_path):
    master = _write(tmp_path / 'master.csv', MASTER.rstrip('\n'))
    suggested = _write(tmp_path / 'suggested.csv', '\n'.join([
        HEADER,
        '議案,令和7年,3,theme:health  # score:1 matched:[介護]',
        '議案,令和6年,9,theme:finance',
        '議案,令和7年,3,theme:health',
        '議案,令和7年,bad,theme:health',
    ]) + '\n')

    first = merge_links(suggested, master)
    assert first == {'appended': 2, 'skipped': 1, 'invalid': 1}
    text = master.read_text(encoding='utf-8')
    assert text == MASTER + '議案,令和6年,9,theme:finance\n議案,令和7年,3,theme:health\n'

    second = merge_links(suggested, master)
    assert second['appended'] == 0
    assert master.read_text(encoding='utf-8') == text


def test_merge_writes_rows_in_master_column_order(tmp_path):
    master_text = 'ref,num,eraLabel,caseType\ntheme:health,3,令和6年,意見案\n'
    master = _write(tmp_path / 'master.csv', master_text)
    suggested = _write(tmp_path / 'suggested.csv', '\n'.join([
        HEADER,
        '意見案,令和7年,1,theme:finance',
        '議案,令和7年,1,theme:finance',
    ]) + '\n')

    assert merge_links(suggested, master)['appended'] == 2
    assert master.read_text(encoding='utf-8') == (
        master_text + 'theme:finance,1,令和7年,議案\ntheme:finance,1,令和7年,意見案\n'
    )

    output = tmp_path / 'gikai_links.json'
    assert build_links(master, output) == {
        '令和6年-意見案-3': ['theme:health'],
        '令和7年-意見案-1': ['theme:finance'],
        '令和7年-議案-1': ['theme:finance'],
    }


def test_merge_creates_missing_master(tmp_path):
    suggested = _write(tmp_path / 'suggested.csv', HEADER + '\n意見案,令和7年,1,theme:community\n')
    master = tmp_path / 'data' / 'master.csv'
    result = merge_links(suggested, master)
    assert result['appended'] == 1
    assert master.read_text(encoding='utf-8') == HEADER + '\n意見案,令和7年,1,theme:community\n'


def test_merge_requires_suggestion_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        merge_links(tmp_path / 'nope.csv', tmp_path / 'master.csv')


def test_build_link_map_dedupes_and_sorts():
    rows = [
        {'caseType': '議案', 'eraLabel': '令和7年', 'num': 2, 'ref': 'theme:health'},
        {'caseType': '議案', 'eraLabel': '令和7年', 'num': 2, 'ref': 'issue:tuktuk'},
        {'caseType': '議案', 'eraLabel': '令和7年', 'num': 2, 'ref': 'theme:health'},
        {'caseType': '意見案', 'eraLabel': '令和6年', 'num': 1, 'ref': 'theme:finance'},
    ]
    link_map = build_link_map(rows)
    assert list(link_map) == sorted(link_map)
    assert link_map['令和7年-議案-2'] == ['issue:tuktuk', 'theme:health']
    assert link_map['令和6年-意見案-1'] == ['theme:finance']


def test_build_links_writes_json(tmp_path):
    master = _write(tmp_path / 'master.csv', MASTER)
    output = tmp_path / 'public' / 'gikai_links.json'
    build_links(master, output)
    assert json.loads(output.read_text(encoding='utf-8')) == {
        '令和7年-議案-1': ['theme:finance'],
        '令和7年-議案-5': ['issue:tuktuk'],
    }


def test_build_empty_master_writes_empty_object(tmp_path):
    master = _write(tmp_path / 'master.csv', '# nothing yet\n')
    output = tmp_path / 'gikai_links.json'
    build_links(master, output)
    assert output.read_text(encoding='utf-8') == '{}\n'


def test_build_aborts_on_row_missing_ref(tmp_path):
    master = _write(tmp_path / 'master.csv', MASTER + '議案,令和7年,7\n')
    output = tmp_path / 'gikai_links.json'

    with pytest.raises(LinkCsvError) as exc:
        build_links(master, output)
    assert exc.value.lineno == 6
    assert not output.exists()
    assert list(tmp_path.iterdir()) == [master]


def test_build_cli_exits_non_zero_and_keeps_previous_output(tmp_path):
    master = _write(tmp_path / 'master.csv', MASTER + '議案,令和7年,7\n')
    output = _write(tmp_path / 'gikai_links.json', '{"previous": []}\n')

    code = main(['build', '--master', str(master), '--output', str(output)])

    assert code == 1
    assert output.read_text(encoding='utf-8') == '{"previous": []}\n'


def test_merge_cli_reports_counts(tmp_path, capsys):
    master = _write(tmp_path / 'master.csv', MASTER)
    suggested = _write(tmp_path / 'suggested.csv', HEADER + '\n議案,令和7年,1,theme:finance\n')

    code = main(['merge', '--suggested', str(suggested), '--master', str(master)])

    assert code == 0
    out = capsys.readouterr().out
    assert 'Appended:            0' in out
    assert 'Skipped (duplicate): 1' in out
