# backend/tests/test_weather.py
import httpx
import pytest
from tenacity import wait_none

from backend.app.errors import NetworkError
from backend.app.services import weather


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch):
    monkeypatch.setattr(weather._get_archive.retry, "wait", wait_none())


def _hourly(samples):
    """samples: list of (timestamp, ghi, dni, dhi, temp)."""
    return {
        "time": [s[0] for s in samples],
        "shortwave_radiation": [s[1] for s in samples],
        "direct_normal_irradiance": [s[2] for s in samples],
        "diffuse_radiation": [s[3] for s in samples],
        "temperature_2m": [s[4] for s in samples],
    }


def test_24_samples_of_100_w_m2_make_2_4_kwh():
    hourly = _hourly([(f"2023-06-15T{h:02d}:00", 100, 0, 0, 20.0) for h in range(24)])
    monthly, annual_ghi, annual_dni = weather.aggregate_hourly(hourly)

    assert len(monthly) == 12
    june = monthly[5]
    assert (june.month, june.month_name) == (6, "Jun")
    assert june.ghi_kwh_m2 == 2.4
    assert june.avg_temp_c == 20.0
    assert monthly[0].ghi_kwh_m2 == 0 and monthly[0].avg_temp_c == 0
    assert annual_ghi == 2
    assert annual_dni == 0


def test_nulls_and_month_from_local_timestamp():
    hourly = _hourly(
        [
            ("2023-01-31T23:00", 500, 300, 200, None),
            ("2023-02-01T00:00", None, None, None, 4.0),
            ("2023-02-01T01:00", 1000, 800, None, 6.0),
        ]
    )
    monthly, annual_ghi, _ = weather.aggregate_hourly(hourly)
    jan, feb = monthly[0], monthly[1]

    assert (jan.ghi_kwh_m2, jan.dni_kwh_m2, jan.dhi_kwh_m2) == (0.5, 0.3, 0.2)
    assert jan.avg_temp_c == 0
    assert feb.ghi_kwh_m2 == 1.0
    assert feb.avg_temp_c == 5.0
    assert annual_ghi == 2


def _archive_payload():
    return {
        "latitude": 35.875,
        "longitude": 14.375,
        "hourly": _hourly([(f"2023-03-01T{h:02d}:00", 400, 500, 100, 15.0) for h in range(24)]),
    }


def test_fetch_sends_archive_query_and_aggregates():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        return httpx.Response(200, json=_archive_payload())

    client = httpx.Client(transport=httpx.MockTransport(handler))
    data = weather.fetch_free_weather_data(35.9, 14.4, 2023, client=client)

    params = seen["url"].params
    assert seen["url"].host == "archive-api.open-meteo.com"
    assert params["start_date"] == "2023-01-01" and params["end_date"] == "2023-12-31"
    assert params["timezone"] == "auto"
    assert params["hourly"] == "shortwave_radiation,direct_normal_irradiance,diffuse_radiation,temperature_2m"

    assert data.source == "free"
    assert data.monthly[2].ghi_kwh_m2 == 9.6
    assert data.annual_ghi == 10
    assert data.annual_dni == 12
    assert data.latitude == 35.875


def test_transient_status_is_retried():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=_archive_payload())

    client = httpx.Client(transport=httpx.MockTransport(handler))
    data = weather.fetch_free_weather_data(35.9, 14.4, client=client)
    assert calls["n"] == 3
    assert data.annual_ghi == 10


def test_fetch_raises_network_error_after_retries():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    with pytest.raises(NetworkError):
        weather.fetch_free_weather_data(1.0, 2.0, client=client)


def test_project_weather_is_best_effort():
    def handler(request):
        return httpx.Response(404)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    assert weather.get_project_weather_data(1.0, 2.0, client=client) is None
    assert weather.get_project_weather_data(None, 2.0, client=client) is None


def test_ties_round_up_not_to_even():
    hourly = _hourly(
        [
            ("2023-01-10T12:00", 2250, 2500, 250, -2.0),
            ("2023-01-10T13:00", None, None, None, -2.5),
            ("2023-02-10T12:00", 250, 0, 0, None),
        ]
    )
    monthly, annual_ghi, annual_dni = weather.aggregate_hourly(hourly)

    jan, feb = monthly[0], monthly[1]
    assert jan.ghi_kwh_m2 == 2.3
    assert jan.dhi_kwh_m2 == 0.3
    assert jan.avg_temp_c == -2.2
    assert feb.ghi_kwh_m2 == 0.3
    assert annual_ghi == 3
    assert annual_dni == 3
