from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import requests

from huawei_ont_client_exceptions import *
from huawei_ont_models import *
from huawei_ont_parser import parse_optic_info
from huawei_ont_utils import *

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10

PRE_LOGIN_COOKIE = ("Cookie", "body:Language:english:id=-1")


class OntClient:
    """
    Session client for the Huawei ONT web UI.

    Every call to :meth:`scrape` runs one full cycle on a fresh
    ``requests.Session``: token fetch, login, optic page fetch and logout.
    The device only holds a single admin session, so logout is attempted on
    every exit path, including failed token fetches and rejected logins.
    """

    def __init__(self, base_url: str, username: str, password: str,
                 profile: DeviceProfile = DeviceProfile(),
                 request_timeout: float = DEFAULT_TIMEOUT,
                 session_factory: Callable[[], requests.Session] = requests.Session,
                 on_logout_failure: Optional[Callable[[Exception], None]] = None):
        self.base_url = normalize_base_url(base_url)
        self.username = username
        self._password = password
        self.profile = profile
        self.request_timeout = request_timeout
        self._session_factory = session_factory
        self._on_logout_failure = on_logout_failure

    def __repr__(self) -> str:
        return f"OntClient(base_url={self.base_url!r}, username={self.username!r})"

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _timeout(self, step: str, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.request_timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ScrapeTimeoutError(f"cycle budget exhausted before {step}")
        return min(self.request_timeout, remaining)

    @contextmanager
    def _session(self) -> Iterator[requests.Session]:
        session = self._session_factory()
        session.cookies.set(*PRE_LOGIN_COOKIE, path="/")
        try:
            yield session
        finally:
            try:
                self._logout(session)
            finally:
                session.close()

    def scrape(self, budget: Optional[float] = None) -> TelemetrySample:
        """
        Run one login/scrape/logout cycle.

        Args:
            budget: Overall time budget for the cycle in seconds. Each request
                gets the smaller of the remaining budget and ``request_timeout``.

        Returns:
            The parsed sample.

        Raises:
            ScrapeError: the first failure of the cycle; logout still ran.
        """
        deadline = time.monotonic() + budget if budget is not None else None
        with self._session() as session:
            self._prime(session, deadline)
            token = self._get_token(session, deadline)
            self._login(session, token, deadline)
            body = self._fetch_optic_page(session, deadline)
        try:
            return parse_optic_info(body, self.profile)
        except ParseError as e:
            raise ParseFailedError(f"Failed to parse optic info: {e}", field=e.field) from e

    def _prime(self, session: requests.Session, deadline: Optional[float]) -> None:
        # Loads the login page so the device hands out its initial cookies; the outcome is irrelevant.
        try:
            session.get(self._url("/"), timeout=self._timeout("session init", deadline))
        except requests.RequestException as e:
            logger.debug(f"Session init request failed: {e}")

    def _get_token(self, session: requests.Session, deadline: Optional[float]) -> str:
        try:
            response = session.post(self._url(self.profile.token_path),
                                    headers={
                                        "Referer": f"{self.base_url}/",
                                        "Origin": self.base_url,
                                        "X-Requested-With": "XMLHttpRequest",
                                    },
                                    timeout=self._timeout("token fetch", deadline))
            response.raise_for_status()
        except requests.Timeout as e:
            raise ScrapeTimeoutError(f"Token fetch timed out: {e}") from e
        except requests.RequestException as e:
            raise TokenFetchError(f"Token fetch failed: {e}") from e

        token = strip_bom(response.text)
        if not token:
            raise TokenFetchError("Token fetch returned an empty token")
        logger.debug(f"Got login token: {token}")
        return token

    def _login(self, session: requests.Session, token: str, deadline: Optional[float]) -> None:
        logger.debug(f"Logging in to {self.base_url} as {self.username}")
        payload = {
            "UserName": self.username,
            "PassWord": b64encode_password(self._password),
            "Language": "english",
            "x.X_HW_Token": token,
        }
        try:
            response = session.post(self._url(self.profile.login_path),
                                    headers={"Referer": f"{self.base_url}/"},
                                    data=payload,
                                    timeout=self._timeout("login", deadline))
            response.raise_for_status()
        except requests.Timeout as e:
            raise ScrapeTimeoutError(f"Login timed out: {e}") from e
        except requests.RequestException as e:
            raise AuthFailedError(f"Login request failed: {e}") from e

        if self._is_login_page(response.text):
            raise AuthFailedError("Login rejected: device returned the login page")
        logger.debug("Login successful")

    @staticmethod
    def _is_login_page(text: str) -> bool:
        # A successful login answers with a JS redirect that also mentions login.asp.
        return "login.asp" in text and "top.location.replace" not in text

    def _fetch_optic_page(self, session: requests.Session, deadline: Optional[float]) -> str:
        logger.debug("Fetching optic info")
        try:
            response = session.get(self._url(self.profile.optic_path),
                                   headers={"Referer": f"{self.base_url}/"},
                                   timeout=self._timeout("optic page fetch", deadline))
            response.raise_for_status()
        except requests.Timeout as e:
            raise ScrapeTimeoutError(f"Optic page fetch timed out: {e}") from e
        except requests.RequestException as e:
            raise PageFetchError(f"Optic page fetch failed: {e}") from e

        if self._is_login_page(response.text):
            raise AuthFailedError("Session was rejected while fetching the optic page")
        return response.text

    def _logout(self, session: requests.Session) -> None:
        logger.debug("Logging out")
        try:
            # Logout gets its own full timeout even when the cycle budget is spent.
            response = session.get(self._url(self.profile.logout_path),
                                   timeout=self.request_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            error = LogoutFailedError(f"Logout failed: {e}")
            logger.warning(str(error))
            if self._on_logout_failure is not None:
                self._on_logout_failure(error)
