from __future__ import annotations

from typing import Optional

from huawei_ont_models import ScrapeErrorKind


class ScrapeError(Exception):
    kind: ScrapeErrorKind = ScrapeErrorKind.UNEXPECTED


class TokenFetchError(ScrapeError):
    kind = ScrapeErrorKind.TOKEN_FETCH


class AuthFailedError(ScrapeError):
    kind = ScrapeErrorKind.AUTH_FAILED


class PageFetchError(ScrapeError):
    kind = ScrapeErrorKind.PAGE_FETCH


class ParseFailedError(ScrapeError):
    kind = ScrapeErrorKind.PARSE_FAILED

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ScrapeTimeoutError(ScrapeError):
    kind = ScrapeErrorKind.TIMEOUT


class LogoutFailedError(ScrapeError):
    kind = ScrapeErrorKind.LOGOUT_FAILED


class ParseError(ValueError):
    """Raised by the optic page parser; ``field`` names the reading that could not be decoded."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason
