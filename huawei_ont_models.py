from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class OpticModuleInfo:
    """Descriptive fields of the optical module, as reported next to the readings."""
    link_status: str = ""
    vendor: str = ""
    serial: str = ""
    manufacture_date: str = ""
    tx_wavelength_nm: str = ""
    rx_wavelength_nm: str = ""


@dataclass(frozen=True)
class TelemetrySample:
    tx_power_dbm: float
    """Transmit optical power in dBm."""
    rx_power_dbm: float
    """Receive optical power in dBm."""
    voltage_mv: int
    """Working voltage in millivolts."""
    bias_current_ma: float
    """Laser bias current in milliamperes."""
    temperature_celsius: float
    """Module temperature in degrees Celsius."""
    module: Optional[OpticModuleInfo] = None
    """Module identity, when the page carried it."""


class ScrapeErrorKind(Enum):
    TOKEN_FETCH = "token_fetch"
    AUTH_FAILED = "auth_failed"
    PAGE_FETCH = "page_fetch"
    PARSE_FAILED = "parse_failed"
    TIMEOUT = "timeout"
    LOGOUT_FAILED = "logout_failed"
    """
    Best-effort cleanup failure, never the outcome of a cycle
    """
    UNEXPECTED = "unexpected"

    @classmethod
    def cycle_outcomes(cls) -> list[ScrapeErrorKind]:
        return [k for k in cls if k is not cls.LOGOUT_FAILED]


class HttpOutcome(Enum):
    OK = "ok"
    ERROR = "error"


class SchedulerState(Enum):
    IDLE = "idle"
    SCRAPING = "scraping"


@dataclass(frozen=True)
class DeviceProfile:
    """
    Firmware specific endpoints and field positions.

    Defaults match HG8145V5 firmware, where the optic page embeds
    ``new stOpticInfo(domain, LinkStatus, transOpticPower, revOpticPower,
    voltage, temperature, bias, ...)``.
    """
    token_path: str = "/asp/GetRandCount.asp"
    login_path: str = "/login.cgi"
    optic_path: str = "/html/amp/opticinfo/opticinfo.asp"
    logout_path: str = "/logout.cgi?RequestFile=html/logout.html"
    optic_constructor: str = "stOpticInfo"

    link_status_index: int = 1
    tx_power_index: int = 2
    rx_power_index: int = 3
    voltage_index: int = 4
    temperature_index: int = 5
    bias_current_index: int = 6
    vendor_index: int = 9
    serial_index: int = 10
    manufacture_date_index: int = 11
    tx_wavelength_index: int = 12
    rx_wavelength_index: int = 13
