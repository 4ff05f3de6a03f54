from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from conftest import apidata_script, jsonp_reply, never, quote_fields
from fundhub.core.config import settings
from fundhub.core.exceptions import (
    DataUnavailableError,
    InvalidFundCodeError,
    LoadFailureError,
    NoEnvironmentError,
)
from fundhub.services.fund_data import FundDataService
from fundhub.services.fund_data.models import FundQuote, FundSnapshot, HistoryPoint
from fundhub.services.fund_data.valuation import (
    merge_official_quote,
    parse_fund_quote,
    parse_net_value_row,
)
import fundhub.services.fund_data.valuation as valuation_module

FUND_GZ_SCRIPT = (
    'jsonpgz({"fundcode":"000001","name":"华夏成长混合","jzrq":"2024-05-09",'
    '"dwjz":"1.0850","gsz":"1.0912","gszzl":"0.57","gztime":"2024-05-10 15:00"});'
)
FUND_QUOTE = quote_fields(
    "1", "华夏成长混合", "000001", "--", "--", "1.0900", "3.5050", "0.46", "2024-05-10 00:00:00"
)
HOLDINGS_TABLE = (
    "<table><thead><tr><th>股票代码</th><th>股票名称</th><th>占净值比例</th></tr></thead>"
    "<tbody><tr><td>600519</td><td>贵州茅台</td><td>8.50%</td></tr></tbody></table>"
)


def net_value_table(*rows):
    body = "".join(
        f"<tr><td>{d}</td><td class='tor bold'>{v}</td><td class='tor bold'>3.5050</td>"
        f"<td class='tor bold red'>0.46%</td><td>开放申购</td><td>开放赎回</td><td></td></tr>"
        for d, v in rows
    )
    return (
        "<table class='w782 comm lsjz'><thead><tr><th class='first'>净值日期</th><th>单位净值</th>"
        f"<th>累计净值</th><th>日增长率</th></tr></thead><tbody>{body}</tbody></table>"
    )


NO_DATA_TABLE = "<table><tbody><tr><td colspan='7' align='center'>暂无数据!</td></tr></tbody></table>"


def snapshot(nav_date):
    return FundSnapshot(code="000001", name="华夏成长混合", nav="1.0850", nav_date=nav_date)


def fund_quote(nav_date):
    return FundQuote(name="华夏成长混合", nav="1.0900", nav_change_percent=0.46, nav_date=nav_date)


def test_parse_fund_quote():
    quote = parse_fund_quote(FUND_QUOTE)

    assert quote == FundQuote(
        name="华夏成长混合", nav="1.0900", nav_change_percent=0.46, nav_date="2024-05-10"
    )
    assert parse_fund_quote("") is None


def test_newer_official_quote_wins():
    merged = merge_official_quote(snapshot("2024-05-09"), fund_quote("2024-05-10"))

    assert (merged.nav, merged.nav_date, merged.nav_change_percent) == ("1.0900", "2024-05-10", 0.46)


def test_equal_dates_prefer_official_quote():
    merged = merge_official_quote(snapshot("2024-05-10"), fund_quote("2024-05-10"))

    assert merged.nav == "1.0900"


def test_older_or_undated_quote_keeps_estimate_source():
    base = snapshot("2024-05-10")

    assert merge_official_quote(base, fund_quote("2024-05-09")) is base
    assert merge_official_quote(base, fund_quote("")) is base
    assert merge_official_quote(base, None) is base


def test_parse_net_value_row():
    content = net_value_table(("2024-05-10", "1.0850"), ("2024-05-09", "1.0800"))

    assert parse_net_value_row(content, "2024-05-09") == 1.08
    assert parse_net_value_row(content, "2024-05-08") is None
    assert parse_net_value_row(NO_DATA_TABLE, "2024-05-10") is None


def _route_snapshot_sources(loader):
    loader.route("fundgz.1234567.com.cn", FUND_GZ_SCRIPT)
    loader.route("qt.gtimg.cn/q=jj000001", f'v_jj000001="{FUND_QUOTE}";')
    loader.route("type=jjcc", apidata_script(HOLDINGS_TABLE))
    loader.route(
        "qt.gtimg.cn/q=s_",
        f'v_s_sh600519="{quote_fields("1", "贵州茅台", "600519", "1700.00", "12.00", "0.71")}";',
    )


@pytest.mark.asyncio
async def test_fetch_fund_data_merges_all_sources(loader, service):
    _route_snapshot_sources(loader)

    result = await service.fetch_fund_data("000001")

    assert result.code == "000001"
    assert result.name == "华夏成长混合"
    assert result.estimated_nav == "1.0912"
    assert result.estimated_change_percent == 0.57
    assert result.estimate_time == "2024-05-10 15:00"
    assert (result.nav, result.nav_date, result.nav_change_percent) == ("1.0900", "2024-05-10", 0.46)
    assert result.no_valuation is False
    assert [(h.code, h.weight, h.change) for h in result.holdings] == [("600519", "8.50%", 0.71)]
    assert loader.requests_for("fundgz.1234567.com.cn")[0].startswith(
        "https://fundgz.1234567.com.cn/js/000001.js?rt="
    )


@pytest.mark.asyncio
async def test_fetch_fund_data_keeps_non_numeric_estimate_change(loader, service):
    _route_snapshot_sources(loader)
    loader.route("fundgz.1234567.com.cn", FUND_GZ_SCRIPT.replace('"0.57"', '"--"'))

    result = await service.fetch_fund_data("000001")

    assert result.estimated_change_percent == "--"


@pytest.mark.asyncio
async def test_fetch_fund_data_survives_quote_and_holdings_failures(loader, service):
    loader.route("fundgz.1234567.com.cn", FUND_GZ_SCRIPT)
    loader.route("qt.gtimg.cn", LoadFailureError("quote down"))
    loader.route("type=jjcc", LoadFailureError("archives down"))

    result = await service.fetch_fund_data("000001")

    assert (result.nav, result.nav_date) == ("1.0850", "2024-05-09")
    assert result.holdings == ()


def _route_fallback_sources(loader, quote=FUND_QUOTE):
    loader.route(
        "FundSearchAPI",
        jsonp_reply({"Datas": [{"CODE": "000001", "NAME": "华夏成长混合(A)", "CATEGORY": 700}]}),
    )
    loader.route("qt.gtimg.cn/q=jj000001", f'v_jj000001="{quote}";')


@pytest.mark.asyncio
async def test_estimate_load_failure_uses_fallback(loader, service):
    _route_fallback_sources(loader)
    loader.route("fundgz.1234567.com.cn", LoadFailureError("HTTP 404"))

    result = await service.fetch_fund_data("000001")

    assert result.no_valuation is True
    assert result.name == "华夏成长混合(A)"
    assert (result.nav, result.nav_date, result.nav_change_percent) == ("1.0900", "2024-05-10", 0.46)
    assert result.estimated_nav is None
    assert "callback=SuggestData_fallback_" in loader.requests_for("FundSearchAPI")[0]


@pytest.mark.asyncio
async def test_estimate_timeout_uses_fallback(loader, service, monkeypatch):
    monkeypatch.setattr(settings, "fund_gz_timeout_ms", 5)
    _route_fallback_sources(loader)
    loader.route("fundgz.1234567.com.cn", lambda url: never())

    result = await service.fetch_fund_data("000001")

    assert result.no_valuation is True
    assert "jsonpgz" not in service.transport.environment.globals


@pytest.mark.asyncio
async def test_fallback_without_net_value_is_unavailable(loader, service):
    _route_fallback_sources(loader, quote="")

    with pytest.raises(DataUnavailableError):
        await service.fetch_fund_data_fallback("000001")


@pytest.mark.asyncio
async def test_fallback_tolerates_search_failure(loader, service):
    _route_fallback_sources(loader)
    loader.route("FundSearchAPI", LoadFailureError("search down"))

    result = await service.fetch_fund_data_fallback("000001")

    assert result.name == "华夏成长混合"


@pytest.mark.asyncio
async def test_fallback_names_unknown_funds_by_code(loader, service):
    quote = quote_fields("1", "", "000001", "--", "--", "1.0900", "3.5050", "0.46", "2024-05-10")
    _route_fallback_sources(loader, quote=quote)
    loader.route("FundSearchAPI", jsonp_reply({"Datas": []}))

    result = await service.fetch_fund_data_fallback("000001")

    assert result.name == "未知基金(000001)"


@pytest.mark.asyncio
async def test_snapshot_requires_environment():
    service = FundDataService()

    with pytest.raises(NoEnvironmentError):
        await service.fetch_fund_data("000001")
    with pytest.raises(NoEnvironmentError):
        await service.fetch_fund_data_fallback("000001")


@pytest.mark.asyncio
async def test_fetch_fund_net_value(loader, service):
    loader.route("type=lsjz", apidata_script(net_value_table(("2024-05-10", "1.0850")), records=1))

    assert await service.fetch_fund_net_value("000001", "2024-05-10") == 1.085
    url = loader.requests_for("type=lsjz")[0]
    assert "page=1&per=1&sdate=2024-05-10&edate=2024-05-10" in url


@pytest.mark.asyncio
async def test_fetch_fund_net_value_none_cases(loader, service):
    loader.route("type=lsjz", apidata_script(NO_DATA_TABLE))
    assert await service.fetch_fund_net_value("000001", "2024-05-11") is None

    loader.route("type=lsjz", LoadFailureError("F10 down"))
    assert await service.fetch_fund_net_value("000001", "2024-05-11") is None

    assert await FundDataService().fetch_fund_net_value("000001", "2024-05-11") is None


def _freeze_today(monkeypatch, today):
    tz = ZoneInfo("Asia/Shanghai")
    monkeypatch.setattr(
        valuation_module, "now_in_tz", lambda: datetime(today.year, today.month, today.day, 10, tzinfo=tz)
    )


def _net_value_only_on(published):
    def reply(url):
        if f"sdate={published}" in url:
            return apidata_script(net_value_table((published, "1.2000")))
        return apidata_script(NO_DATA_TABLE)
    return reply


@pytest.mark.asyncio
async def test_smart_lookup_finds_thirtieth_day(loader, service, monkeypatch):
    _freeze_today(monkeypatch, date(2024, 6, 30))
    loader.route("type=lsjz", _net_value_only_on("2024-05-30"))

    result = await service.fetch_smart_fund_net_value("000001", "2024-05-01")

    assert result == HistoryPoint(date="2024-05-30", value=1.2)
    assert len(loader.requests_for("type=lsjz")) == 30


@pytest.mark.asyncio
async def test_smart_lookup_gives_up_after_thirty_probes(loader, service, monkeypatch):
    _freeze_today(monkeypatch, date(2024, 6, 30))
    loader.route("type=lsjz", _net_value_only_on("2024-05-31"))

    assert await service.fetch_smart_fund_net_value("000001", date(2024, 5, 1)) is None
    assert len(loader.requests_for("type=lsjz")) == 30


@pytest.mark.asyncio
async def test_smart_lookup_never_probes_future_dates(loader, service, monkeypatch):
    _freeze_today(monkeypatch, date(2024, 6, 30))
    loader.route("type=lsjz", _net_value_only_on("2024-07-01"))

    assert await service.fetch_smart_fund_net_value("000001", "2024-06-29") is None
    assert len(loader.requests_for("type=lsjz")) == 2


@pytest.mark.asyncio
async def test_smart_lookup_rejects_invalid_start(loader, service):
    assert await service.fetch_smart_fund_net_value("000001", "not-a-date") is None
    assert loader.requests == []


def _fund_quote_for(url):
    code = url.rsplit("q=jj", 1)[1][:6]
    return f'v_jj{code}="{FUND_QUOTE}";'


@pytest.mark.asyncio
async def test_many_fund_codes_leave_no_binding_queues(loader, service):
    loader.route("fundgz.1234567.com.cn", FUND_GZ_SCRIPT)
    loader.route("qt.gtimg.cn/q=jj", _fund_quote_for)
    loader.route("type=jjcc", apidata_script(""))

    for i in range(50):
        result = await service.fetch_fund_data(f"{i:06d}")
        assert result.nav_date == "2024-05-10"

    assert len(loader.requests_for("qt.gtimg.cn/q=jj")) == 50
    assert service.queues.bindings == ()


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["000001,s_sh600519&foo=1", "00001", "abcdef", "000001\n"])
async def test_invalid_codes_send_nothing_upstream(loader, service, code):
    with pytest.raises(InvalidFundCodeError):
        await service.fetch_fund_data(code)
    with pytest.raises(InvalidFundCodeError):
        await service.fetch_fund_data_fallback(code)
    assert await service.valuation.fetch_official_quote(code) is None
    assert await service.fetch_fund_net_value(code, "2024-05-10") is None
    assert await service.fetch_smart_fund_net_value(code, "2024-05-10") is None
    assert await service.fetch_fund_history_net_value(code, "2024-05-10") == []

    assert loader.requests == []
    assert service.transport.environment.globals == {}
