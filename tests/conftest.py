import pytest

# Text as pdfplumber returns it for a typical 定例会 resolution report:
# full-width digits, a page banner, then result blocks each followed by titles.
RESOLUTION_TEXT = """新得町議会議決結果報告
新 議 号
令和　７　年　３　月　１９　日
新 得 町 長 浜 田 正 利 様
新得町議会議長 湯浅 佳春
定例第１回　３月３日　３月１９日　１７日間
議案番号 議決月日 議決結果
議案第１号　３月１４日　原案可決
議案第２号　３月１４日　原案可決
件 名
令和7年度新得町一般会計予算
新得町農業振興に
関する条例の一部を改正する条例
議案第３号　３月１９日　修正可決
新得町介護保険条例の一部を改正する
ことについて
意見案第１号　３月１９日　採択
地域公共交通の確保を求める意見書
"""


@pytest.fixture
def resolution_text():
    return RESOLUTION_TEXT


@pytest.fixture
def sample_sessions():
    return [
        {
            'pdfUrl': 'https://www.shintoku-town.jp/files/r7-1.pdf',
            'year': 2025,
            'eraLabel': '令和7年',
            'sessionLabel': '定例第1回',
            'sessionName': '令和7年定例第1回',
            'sessionRange': '3月3日～3月19日',
            'items': [
                {'caseNumber': '議案第1号', 'caseType': '議案', 'num': 1,
                 'title': '令和7年度新得町一般会計補正予算（第1号）',
                 'decisionDate': '3月14日', 'result': '原案可決'},
                {'caseNumber': '議案第2号', 'caseType': '議案', 'num': 2,
                 'title': '介護施設における防災対策について',
                 'decisionDate': '3月14日', 'result': '原案可決'},
                {'caseNumber': '議案第3号', 'caseType': '議案', 'num': 3,
                 'title': '', 'decisionDate': '3月19日', 'result': '否決'},
                {'caseNumber': '議案第4号', 'caseType': '議案', 'num': 4,
                 'title': '健康増進施設の設置について',
                 'decisionDate': '3月19日', 'result': '原案可決'},
            ],
        },
    ]
