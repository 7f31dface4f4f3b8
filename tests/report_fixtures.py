"""
report_fixtures.py

Small, hand-checked dataset shared by the report tests.

Ledger (in-range totals for months 1-12):
    qj  = 10000 + 20000 + 8000 + 12000 = 50000
    dc  = 50000 + 30000                = 80000
    P006 has an unparseable premium and date: kept in the raw view only.
"""

import sys
from datetime import datetime
from io import BytesIO
from pathlib import Path

from openpyxl import Workbook

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "code"))

from bancassurance.normalize import normalize_rows  # noqa: E402
from bancassurance.reference import ReferenceTables  # noqa: E402
from bancassurance.roster import normalize_roster  # noqa: E402

SETTINGS = {
    "productShorts": [
        {"fullName": "鑫享年金保险(A款)", "shortName": "鑫享", "category": "方案1"},
        {"fullName": "稳盈两全保险", "shortName": "稳盈", "category": "普通", "aliases": ["稳盈两全"]},
    ],
    "bankShorts": [
        {"fullName": "中国工商银行", "shortName": "工行", "sortOrder": 1},
        {"fullName": "中国邮政储蓄银行", "shortName": "邮储", "sortOrder": 2},
    ],
    "channels": [
        {"name": "工行渠道", "aliases": ["工商银行"], "isPostal": False, "bbWeight": 1, "sortOrder": 1},
        {"name": "邮储渠道", "aliases": ["邮政", "中国邮政储蓄银行"], "isPostal": True, "bbWeight": 0.3, "sortOrder": 2},
    ],
    "zhebiaoCofs": [
        {"xianzhong": "鑫享年金保险(A款)", "nianxian": "5", "xishu": 0.5},
        {"xianzhong": "稳盈两全保险", "nianxian": "1", "xishu": 0.1},
    ],
    "coreNetworks": [
        {"totalBankName": "中国工商银行", "networkCode": "N001", "agencyName": "工行城东支行",
         "customerManager": "张三", "deptManager": "李经理", "areaDirector": "王总监", "coreNetwork": "是"},
    ],
    "networkShorts": [{"fullName": "工行城东支行", "shortName": "城东"}],
    "deptTargets": [
        {"deptName": "李经理", "month": 0, "qjTarget": 100000, "dcTarget": 50000},
        {"deptName": "李经理", "month": 3, "qjTarget": 30000, "dcTarget": 0},
        {"deptName": "钱经理", "month": 0, "qjTarget": 40000, "dcTarget": 0},
        {"deptName": "赵经理", "month": 0, "qjTarget": 0, "dcTarget": 0},
    ],
    "personTargets": [{"name": "张三", "zhiji": "高级", "weichi": 5000}],
    "staff": [
        {"id": "1", "name": "王总监", "role": "director", "parentId": "", "status": "active", "month": 0},
        {"id": "2", "name": "赵经理", "role": "deptManager", "parentId": "王总监", "status": "active", "month": 0},
        {"id": "3", "name": "孙七", "role": "customerManager", "parentId": "赵经理", "status": "active", "month": 0},
    ],
}

SOURCE_HEADER = [
    "保单号", "投保人姓名", "险种", "缴费间隔", "缴费期间年", "新约保费", "价值规模分类",
    "十大银行渠道", "银行总行", "代理机构名称", "业绩归属网点名称", "业绩归属客户经理姓名",
    "营业部经理名称", "营业区总监", "保单状态", "保单签单日期", "是否行方预录",
]

SOURCE_ROWS = [
    ["P001", "甲", "鑫享年金保险(A款)", "年交", 5, 10000, "价值类", "工行渠道", "中国工商银行",
     "工行城东支行", "工行城东支行", "张三", "李经理", "王总监", "有效", "2024-01-15", "否"],
    ["P002", "乙", "稳盈两全保险", "趸交", 1, 50000, "规模类", "邮储渠道", "中国邮政储蓄银行",
     "邮储西街网点", "邮储西街网点", "李四", "李经理", "王总监", "有效", "2024/02/03", "否"],
    ["P003", "丙", "鑫享年金保险（A款）", "年交", 5, "20,000", "价值类", "工行渠道", "中国工商银行",
     "工行南门支行", "工行南门支行", "王五", "钱经理", "王总监", "有效", datetime(2024, 3, 8), "是"],
    ["P004", "丁", "未知险种X", "年交", 3, 8000, "价值类", "建行渠道", "中国建设银行",
     "建行北路支行", "建行北路支行", "孙七", None, None, "有效", 45366, "否"],
    ["P005", "戊", "稳盈两全", "趸交", 1, 30000, "价值类", "工行渠道", "中国工商银行",
     "工行城东支行", "城东", "张三", "李经理", "王总监", "有效", "2024年4月2日", "否"],
    ["P006", "己", "鑫享年金保险(A款)", "年交", 5, "abc", "价值类", "工行渠道", "中国工商银行",
     "工行城东支行", "工行城东支行", "张三", "李经理", "王总监", "有效", "not a date", "否"],
    ["P007", "庚", "鑫享年金保险(A款)", "年交", 5, 12000, "价值类", "工行渠道", "中国工商银行",
     "无名网点", "无名网点", "周八", None, None, "有效", "2024-05-20", "否"],
]

ROSTER_HEADER = [
    "总行名称", "归属渠道", "代理机构代码", "代理机构名称", "客户经理工号", "客户经理姓名",
    "营业部经理工号", "营业部经理姓名", "营业区总监工号", "营业区总监姓名", "所在市名称",
    "是否物理合作网点", "是否铁杆网点",
]

ROSTER_ROWS = [
    ["中国工商银行", "工行渠道", "N001", "工行城东支行", "001", "张三", "101", "李经理", "201", "王总监", "城A", "是", "是"],
    ["中国邮政储蓄银行", "邮储渠道", "N002", "邮储西街网点", "002", "李四", "101", "李经理", "201", "王总监", "城A", "否", "否"],
    ["中国工商银行", "工行渠道", "N003", "工行南门支行", "003", "王五", "102", "钱经理", "201", "王总监", "城B", "是", "否"],
]

DAILY_HEADER = ["保单号", "投保人姓名", "险种", "交费间隔", "保费", "签单日期", "银行总行",
                "代理机构名称", "保单状态", "营业部经理姓名"]

DAILY_ROWS = [
    ["D001", "甲", "鑫享年金保险(A款)", "年交", 6000, "2024-05-21", "中国工商银行", "工行城东支行", "有效", "李经理"],
    ["D002", "乙", "鑫享年金保险(A款)", "年交", 4000, "2024-05-21", "中国邮政储蓄银行", "邮储西街网点", "有效", "李经理"],
    ["D003", "丙", "稳盈两全保险", "趸交", 9000, "2024-05-21", "中国工商银行", "工行南门支行", "有效", None],
]


def source_grid():
    """Two title rows, a blank spacer, then the header at index 3, data, a blank row and a footer."""
    footer = ["合计"] + [None] * (len(SOURCE_HEADER) - 1)
    footer[5] = 130000
    return (
        [["银保业务清单", None], ["导出日期: 2024-06-01"], [None] * 3, list(SOURCE_HEADER)]
        + [list(r) for r in SOURCE_ROWS]
        + [[None] * len(SOURCE_HEADER), footer]
    )


def roster_grid():
    return [list(ROSTER_HEADER)] + [list(r) for r in ROSTER_ROWS]


def daily_grid():
    return [["日清单"], [None], list(DAILY_HEADER)] + [list(r) for r in DAILY_ROWS]


def reference_tables(**overrides):
    doc = dict(SETTINGS)
    doc.update(overrides)
    return ReferenceTables.from_settings(doc)


def source_sheet():
    return normalize_rows(source_grid())


def roster():
    return normalize_roster(roster_grid())


def workbook_bytes(grid, sheet_name="Sheet1"):
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name
    for r, row in enumerate(grid, start=1):
        for c, value in enumerate(row, start=1):
            if value is not None:
                ws.cell(row=r, column=c, value=value)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
