import copy
import io
from datetime import datetime

import pandas as pd
import pytest

from sales_insight.config import Settings
from sales_insight.pipeline import AnalysisPipeline


class ScriptedClient:
    """ModelClient that replays canned responses and records what it was sent."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.prompts = []
        self.configs = []

    def generate(self, prompt, config):
        self.prompts.append(prompt)
        self.configs.append(config)
        if not self.responses:
            raise AssertionError("unexpected model call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def make_client():
    return ScriptedClient


@pytest.fixture
def settings():
    return Settings(api_key="test-key", language="zh-Hant")


@pytest.fixture
def seed_context(settings):
    return AnalysisPipeline(settings, client=ScriptedClient([])).build_seed_context()


@pytest.fixture
def stage_contexts(seed_context):
    """Valid stage outputs R1, R2, R3, each a superset of the previous one."""
    r1 = copy.deepcopy(seed_context)
    r1["thinking"]["數據模式"] = "北區銷售額最高，產品A最暢銷"
    r1["thinking"]["基礎統計"] = {"平均銷售額": 1250.0, "最高銷售額": 2500.5}

    r2 = copy.deepcopy(r1)
    r2["thinking"]["區域分析"] = {"強勢區域": "北區", "弱勢區域": "南區"}
    r2["thinking"]["時間序列見解"] = "一月初銷售穩定成長"

    r3 = copy.deepcopy(r2)
    r3["results"] = {
        "總結": "整體銷售表現穩健，北區與產品A為主要動能。",
        "重點見解": ["北區貢獻最多營收", "產品B單筆金額最高"],
        "建議": [
            {"建議": "加強南區行銷", "步驟": ["分析南區客群", "推出區域促銷"]},
            {"建議": "擴充產品A庫存", "步驟": ["檢視供應鏈"]},
        ],
        "策略影響": "資源應向高成長區域傾斜。",
        "未來機會": "產品B在南區具成長潛力。",
    }
    return r1, r2, r3


@pytest.fixture
def sample_rows():
    return [
        {"日期": datetime(2024, 1, 2), "產品": "A", "區域": "北區", "銷售額": 1000, "客戶": "甲公司"},
        {"日期": "2024-01-01", "產品": "B", "區域": "南區", "銷售額": 2500.5, "客戶": "乙公司"},
        {"日期": datetime(2024, 1, 2, 15, 30), "產品": "A", "區域": "南區", "銷售額": 500, "客戶": "丙公司"},
        {"產品": "C", "區域": "北區", "銷售額": 300},
        {"日期": "2024-01-03", "區域": "北區", "銷售額": 700},
        {"日期": "2024-01-03", "產品": "B", "銷售額": 100},
        {"日期": "2024-01-01", "產品": "A", "區域": "北區"},
    ]


@pytest.fixture
def xlsx_bytes():
    df = pd.DataFrame(
        {
            "日期": pd.to_datetime(["2024-01-01", "2024-01-02", "2024-01-02"]),
            "產品": ["A", "B", "A"],
            "區域": ["北區", "南區", "南區"],
            "銷售額": [1000, 2000, 500],
            "客戶": ["甲公司", None, "丙公司"],
        }
    )
    buffer = io.BytesIO()
    df.to_excel(buffer, index=False, engine="openpyxl")
    return buffer.getvalue()
