import os
from dotenv import load_dotenv

load_dotenv()

# ── Parameters ────────────────────────────────────────────────────────────────
PARAMETERS = ("precipitation", "temperature")
PARAMETER_UNITS = {
    "precipitation": "mm",
    "temperature": "°C",
}
PARAMETER_LABELS = {
    "precipitation": "Precipitation (mm)",
    "temperature": "Temperature (°C)",
}

# ── Analysis windows ──────────────────────────────────────────────────────────
FORECAST_HORIZON_DAYS = 16
OBSERVATION_MONTHS = 3  # ~90 days

# Fixed calendar table, February is never corrected for leap years
DAYS_PER_MONTH = [31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31]
# Temperature cross-month weighting uses a flat 30-day month
TEMPERATURE_MONTH_DAYS = 30
MONTH_KEYS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]

# ── Forecast integration ──────────────────────────────────────────────────────
# GFS publishes hourly steps up to +120h, then 3-hourly steps up to +384h
HOURLY_FORECAST_HOURS = range(1, 121)
THREE_HOURLY_FORECAST_HOURS = range(123, 385, 3)
MAX_FORECAST_HOUR = 384
SECONDS_PER_HOUR = 3600
SECONDS_PER_THREE_HOURS = 10800

KELVIN_OFFSET = 273.15
METERS_TO_MM = 1000.0

# ── Anomaly results ───────────────────────────────────────────────────────────
INVALID_SENTINEL = -999.0
LAYERS = ("past_diff", "forecast_diff", "combined_diff")
LAYER_TITLES = {
    "past_diff": "Past 90-Day Anomaly",
    "forecast_diff": "16-Day Forecast Anomaly",
    "combined_diff": "Combined 90+16 Day Anomaly",
}

# Blue (below) -> neutral -> red (above)
PALETTE = ["#2166ac", "#67a9cf", "#d1e5f0", "#f7f7f7", "#fddbc7", "#ef8a62", "#b2182b"]
MAX_COLOR_INDEX = len(PALETTE) - 1

# ── Batching ──────────────────────────────────────────────────────────────────
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "5"))
BATCH_DELAY_SECONDS = float(os.getenv("BATCH_DELAY_SECONDS", "0.1"))  # backend rate limit

# ── Earth Engine ──────────────────────────────────────────────────────────────
EE_PROJECT_ID = os.getenv("EE_PROJECT_ID")
GFS_COLLECTION = "NOAA/GFS0P25"
GFS_BANDS = {
    "precipitation": "precipitation_rate",
    "temperature": "temperature_2m_above_ground",
}
GFS_SCALE_METERS = 27830
ERA5_COLLECTION = "ECMWF/ERA5_LAND/MONTHLY_AGGR"
ERA5_BANDS = {
    "precipitation": "total_precipitation_sum",
    "temperature": "temperature_2m",
}
ERA5_START_DATE = "2020-01-01"
ERA5_SCALE_METERS = 11132

# ── Reference data ────────────────────────────────────────────────────────────
# Local GeoJSON path or http(s) URL
BOUNDARY_SOURCE = os.getenv("BOUNDARY_SOURCE", "data/districts.geojson")
BOUNDARY_ID_PROPERTY = os.getenv("BOUNDARY_ID_PROPERTY", "GID_3")
BOUNDARY_NAME_PROPERTY = os.getenv("BOUNDARY_NAME_PROPERTY", "NAME_3")
BOUNDARY_FETCH_TIMEOUT_SECONDS = 60
BASELINE_CSV = os.getenv("BASELINE_CSV", "data/baseline_2014_2024.csv")
BASELINE_NAME_COLUMN = "district_name"
BASELINE_PRECIP_PREFIX = "rainfall_"
BASELINE_TEMP_PREFIX = "temperature_"

USER_AGENT = "DistrictEWS/1.0 (anomaly-monitor)"
