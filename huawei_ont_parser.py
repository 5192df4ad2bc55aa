"""
Parser for the ONT optical information page.

The page carries its readings in a JavaScript constructor call rather than in
markup, e.g.::

    new stOpticInfo("InternetGatewayDevice.X_HW_DEBUG.AMP.Optic","ok",
                    "\\x202\\x2e33","\\x2d24\\x2e09","3364","47","10",...)

String arguments may contain ``\\xNN`` escapes which have to be decoded before
the numbers are read.
"""

from __future__ import annotations

import math
import re

from huawei_ont_client_exceptions import ParseError
from huawei_ont_models import DeviceProfile, OpticModuleInfo, TelemetrySample
from huawei_ont_utils import decode_hex_escapes

_ARG_PATTERN = re.compile(r'"(?:[^"\\]|\\.)*"|[^,\s][^,]*')


def _constructor_args(body: str, constructor: str) -> list[str]:
    m = re.search(rf"new\s+{re.escape(constructor)}\s*\(([^)]*)\)", body)
    if m is None:
        raise ParseError("optic_info", f"no {constructor} call found in page")
    args = []
    for token in _ARG_PATTERN.findall(m.group(1)):
        token = token.strip()
        if len(token) >= 2 and token[0] == token[-1] == '"':
            token = token[1:-1]
        args.append(decode_hex_escapes(token).strip())
    return args


def _arg(args: list[str], index: int, field: str) -> str:
    if index >= len(args):
        raise ParseError(field, "missing from optic info")
    return args[index]


def _parse_float(args: list[str], index: int, field: str, non_negative: bool = False) -> float:
    raw = _arg(args, index, field)
    try:
        value = float(raw)
    except ValueError:
        raise ParseError(field, f"not a number: {raw!r}") from None
    if not math.isfinite(value):
        raise ParseError(field, f"not a finite number: {raw!r}")
    if non_negative and value < 0:
        raise ParseError(field, f"negative value: {raw!r}")
    return value


def _parse_int(args: list[str], index: int, field: str) -> int:
    value = _parse_float(args, index, field, non_negative=True)
    if not value.is_integer():
        raise ParseError(field, f"not an integer: {args[index]!r}")
    return int(value)


def _optional(args: list[str], index: int) -> str:
    return args[index] if index < len(args) else ""


def parse_optic_info(body: str, profile: DeviceProfile = DeviceProfile()) -> TelemetrySample:
    """
    Extract the five optical readings from the optic info page.

    Raises:
        ParseError: if the constructor call is absent or any reading is missing or malformed.
            No partial sample is ever returned.
    """
    args = _constructor_args(body, profile.optic_constructor)

    tx_power = _parse_float(args, profile.tx_power_index, "tx_power")
    rx_power = _parse_float(args, profile.rx_power_index, "rx_power")
    voltage = _parse_int(args, profile.voltage_index, "voltage")
    bias_current = _parse_float(args, profile.bias_current_index, "bias_current", non_negative=True)
    temperature = _parse_float(args, profile.temperature_index, "temperature")

    module = OpticModuleInfo(
        link_status=_optional(args, profile.link_status_index),
        vendor=_optional(args, profile.vendor_index),
        serial=_optional(args, profile.serial_index),
        manufacture_date=_optional(args, profile.manufacture_date_index),
        tx_wavelength_nm=_optional(args, profile.tx_wavelength_index),
        rx_wavelength_nm=_optional(args, profile.rx_wavelength_index),
    )

    return TelemetrySample(
        tx_power_dbm=tx_power,
        rx_power_dbm=rx_power,
        voltage_mv=voltage,
        bias_current_ma=bias_current,
        temperature_celsius=temperature,
        module=module,
    )
