"""
Reference-year solar irradiance from the Open-Meteo historical archive.

Hourly shortwave (GHI), direct-normal (DNI) and diffuse (DHI) radiation plus
2 m temperature are fetched for one calendar year and folded into monthly
kWh/m² totals. Timestamps come back in the site's local timezone
(timezone=auto), so the month is read straight off the timestamp string.
"""

from __future__ import annotations

import traceback
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional, Sequence

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from backend.app.errors import NetworkError
from backend.app.services.rounding import round_half_ceiling

ARCHIVE_URL = "https://archive-api.open-meteo.com/v1/archive"
HOURLY_VARIABLES = (
    "shortwave_radiation",
    "direct_normal_irradiance",
    "diffuse_radiation",
    "temperature_2m",
)
MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
DEFAULT_YEAR = 2023


class TransientWeatherError(RuntimeError):
    pass


def _is_retryable_status(code: int) -> bool:
    return code in {408, 425, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class MonthlyIrradiance:
    month: int  # 1-12
    month_name: str
    ghi_kwh_m2: float
    dni_kwh_m2: float
    dhi_kwh_m2: float
    avg_temp_c: float


@dataclass(frozen=True)
class WeatherData:
    monthly: tuple[MonthlyIrradiance, ...]
    annual_ghi: int
    annual_dni: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    year: int = DEFAULT_YEAR
    # "free" = Open-Meteo; an uploaded project file would be "uploaded"
    source: str = "free"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["monthly"] = [asdict(m) for m in self.monthly]
        return d


@dataclass
class _MonthTotals:
    ghi_wh: float = 0.0
    dni_wh: float = 0.0
    dhi_wh: float = 0.0
    temp_sum: float = 0.0
    temp_count: int = 0


def _month_index(timestamp: str) -> int:
    # "YYYY-MM-DDTHH:MM" -> 0..11
    return int(str(timestamp)[5:7]) - 1


def _at(values: Optional[Sequence[Any]], i: int) -> Any:
    if values is None or i >= len(values):
        return None
    return values[i]


def aggregate_hourly(hourly: Mapping[str, Sequence[Any]]) -> tuple[tuple[MonthlyIrradiance, ...], int, int]:
    """
    Fold parallel hourly arrays into 12 monthly records.

    Returns (monthly, annual_ghi, annual_dni). Null irradiance samples count
    as zero; null temperatures are skipped and do not enter the average.
    """
    times = hourly.get("time") or []
    ghi = hourly.get("shortwave_radiation")
    dni = hourly.get("direct_normal_irradiance")
    dhi = hourly.get("diffuse_radiation")
    temp = hourly.get("temperature_2m")

    totals = [_MonthTotals() for _ in range(12)]
    for i, ts in enumerate(times):
        t = totals[_month_index(ts)]
        t.ghi_wh += _at(ghi, i) or 0
        t.dni_wh += _at(dni, i) or 0
        t.dhi_wh += _at(dhi, i) or 0
        temperature = _at(temp, i)
        if temperature is not None:
            t.temp_sum += temperature
            t.temp_count += 1

    monthly: list[MonthlyIrradiance] = []
    annual_ghi = 0.0
    annual_dni = 0.0
    for m, t in enumerate(totals):
        ghi_kwh = t.ghi_wh / 1000
        dni_kwh = t.dni_wh / 1000
        avg_temp = t.temp_sum / t.temp_count if t.temp_count else 0.0
        monthly.append(
            MonthlyIrradiance(
                month=m + 1,
                month_name=MONTH_NAMES[m],
                ghi_kwh_m2=round_half_ceiling(ghi_kwh, 1),
                dni_kwh_m2=round_half_ceiling(dni_kwh, 1),
                dhi_kwh_m2=round_half_ceiling(t.dhi_wh / 1000, 1),
                avg_temp_c=round_half_ceiling(avg_temp, 1),
            )
        )
        annual_ghi += ghi_kwh
        annual_dni += dni_kwh

    return tuple(monthly), int(round_half_ceiling(annual_ghi)), int(round_half_ceiling(annual_dni))


@retry(
    retry=retry_if_exception_type((httpx.TransportError, TransientWeatherError)),
    wait=wait_exponential_jitter(initial=0.5, max=10.0),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _get_archive(client: httpx.Client, params: Mapping[str, Any]) -> dict[str, Any]:
    r = client.get(ARCHIVE_URL, params=params)
    if _is_retryable_status(r.status_code):
        raise TransientWeatherError(f"Retryable HTTP status {r.status_code} from Open-Meteo")
    r.raise_for_status()
    return r.json()


def fetch_free_weather_data(
    latitude: float,
    longitude: float,
    year: int = DEFAULT_YEAR,
    *,
    client: httpx.Client,
) -> WeatherData:
    """Fetch and aggregate one reference year. Raises NetworkError on failure."""
    params = {
        "latitude": latitude,
        "longitude": longitude,
        "start_date": f"{year}-01-01",
        "end_date": f"{year}-12-31",
        "hourly": ",".join(HOURLY_VARIABLES),
        "timezone": "auto",
    }
    print(f"[weather] fetching Open-Meteo lat={latitude} lon={longitude} year={year}", flush=True)

    try:
        data = _get_archive(client, params)
    except (httpx.HTTPError, TransientWeatherError, ValueError) as e:
        raise NetworkError(f"Open-Meteo request failed: {e!r}") from e

    hourly = data.get("hourly")
    if not isinstance(hourly, dict) or not hourly.get("time"):
        raise NetworkError("Open-Meteo response has no hourly data")

    try:
        monthly, annual_ghi, annual_dni = aggregate_hourly(hourly)
    except (TypeError, ValueError, IndexError) as e:
        raise NetworkError(f"Open-Meteo hourly data malformed: {e!r}") from e
    print(f"[weather] aggregated annual_ghi={annual_ghi} annual_dni={annual_dni} months={len(monthly)}", flush=True)

    return WeatherData(
        monthly=monthly,
        annual_ghi=annual_ghi,
        annual_dni=annual_dni,
        latitude=data.get("latitude", latitude),
        longitude=data.get("longitude", longitude),
        year=year,
    )


def get_project_weather_data(
    latitude: Optional[float],
    longitude: Optional[float],
    *,
    client: httpx.Client,
    year: int = DEFAULT_YEAR,
) -> Optional[WeatherData]:
    """
    Best-effort weather for a project site.

    Returns None when coordinates are missing or the fetch fails; callers keep
    their own fallback.
    """
    # TODO: prefer a WeatherFile uploaded for the project once its parsed format is defined
    if latitude is None or longitude is None:
        print("[weather] no coordinates; skipping", flush=True)
        return None

    try:
        return fetch_free_weather_data(latitude, longitude, year, client=client)
    except NetworkError as e:
        print(f"[weather] ERROR: {e}", flush=True)
        traceback.print_exc()
        return None
