from __future__ import annotations

import pytest
import requests
from prometheus_client.parser import text_string_to_metric_families

from huawei_ont_models import TelemetrySample

BASE_URL = "http://192.168.100.1"

OPTIC_PAGE = r"""
<script language="JavaScript" type="text/javascript">
function stOpticInfo(domain,LinkStatus,transOpticPower,revOpticPower,voltage,temperature,bias,rfRxPower,rfOutputPower,VendorName,VendorSN,DateCode,TxWaveLength,RxWaveLength,MaxTxDistance,LosStatus)
{
    this.domain = domain;
}
var opticInfos = new Array(new stOpticInfo("InternetGatewayDevice.X_HW_DEBUG.AMP.Optic","ok","\x202\x2e33","\x2d24\x2e09","3364","47","10","\x2d\x2d","\x2d\x2d","HUAWEI\x20\x20\x20\x20\x20\x20\x20\x20\x20","2416R080776AS\x20\x20","240529","1310","1490","20","0"),null);
</script>
"""

OPTIC_PAGE_WITHOUT_BIAS = r"""
var opticInfos = new Array(new stOpticInfo("InternetGatewayDevice.X_HW_DEBUG.AMP.Optic","ok","\x202\x2e33","\x2d24\x2e09","3364","47"),null);
"""

LOGIN_OK_PAGE = "<script language=\"javascript\">var pageName = '/'; top.location.replace(pageName);</script>"

LOGIN_REJECTED_PAGE = """
<html><head><script>var errloginlockNum = '3';
window.location = '/login.asp';</script></head><body></body></html>
"""


def make_response(status_code: int = 200, text: str = "", url: str = BASE_URL) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    response.url = url
    return response


class FakeSession:
    """Stand-in for ``requests.Session`` answering from a ``(method, path) -> response`` table."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.calls: list[tuple[str, str, dict]] = []
        self.cookies = requests.cookies.RequestsCookieJar()
        self.closed = False

    def _handle(self, method: str, url: str, **kwargs):
        path = url[len(BASE_URL):]
        self.calls.append((method, path, kwargs))
        outcome = self.routes.get((method, path))
        if outcome is None:
            return make_response(404, "Not Found", url)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def get(self, url, **kwargs):
        return self._handle("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._handle("POST", url, **kwargs)

    def close(self):
        self.closed = True

    def paths(self) -> list[str]:
        return [path for _, path, _ in self.calls]


def metric_samples(text: str) -> dict:
    """Map ``(sample_name, frozenset(labels))`` to value for a rendered payload."""
    samples = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            samples[(sample.name, frozenset(sample.labels.items()))] = sample.value
    return samples


def metric_value(text: str, name: str, **labels):
    return metric_samples(text).get((name, frozenset(labels.items())))


@pytest.fixture
def sample() -> TelemetrySample:
    return TelemetrySample(
        tx_power_dbm=2.33,
        rx_power_dbm=-24.09,
        voltage_mv=3364,
        bias_current_ma=10.0,
        temperature_celsius=47.0,
    )
