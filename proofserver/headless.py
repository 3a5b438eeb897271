"""Headless browser find requests: validation and HTTP client."""

from __future__ import annotations

import json
import posixpath
import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from fractions import Fraction
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import requests

DEFAULT_TIMEOUT = "10s"


class MatchType(StrEnum):
    REGEXP = "regexp"
    XPATH = "xpath"
    JS = "js"


class InvalidFindRequest(ValueError):
    """Raised when a find request is malformed or incomplete."""


@dataclass
class MatchRegExp:
    """Element selector (``*`` when empty) and the regular expression its text must match."""

    selector: str = ""
    value: str = ""


@dataclass
class MatchXPath:
    selector: str = ""


@dataclass
class MatchJS:
    value: str = ""


@dataclass
class Match:
    type: str = ""
    regexp: MatchRegExp | None = None
    xpath: MatchXPath | None = None
    js: MatchJS | None = None


@dataclass
class FindRequest:
    location: str = ""
    timeout: str = ""
    match: Match = field(default_factory=Match)

    def to_dict(self) -> dict[str, Any]:
        m = self.match
        return {
            "location": self.location,
            "timeout": self.timeout,
            "match": {
                "type": m.type,
                "regexp": None if m.regexp is None
                else {"selector": m.regexp.selector, "value": m.regexp.value},
                "xpath": None if m.xpath is None else {"selector": m.xpath.selector},
                "js": None if m.js is None else {"value": m.js.value},
            },
        }


@dataclass
class FindResponse:
    content: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, str]:
        result = {"content": self.content}
        if self.message:
            result["message"] = self.message
        return result


_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_TERM = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")
_MAX_NS = 2**63 - 1


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"10s"``, ``"1h30m"`` or ``"1.5ms"``."""
    rest = text
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {text!r}")

    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        m = _TERM.match(rest, pos)
        whole, frac, unit = m.groups()
        if not whole and not frac:
            raise ValueError(f"invalid duration {text!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {text!r}")
        if unit not in _UNITS:
            raise ValueError(f"unknown unit {unit!r} in duration {text!r}")
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _UNITS[unit]
        pos = m.end()

    nanoseconds = int(total)
    if nanoseconds > _MAX_NS:
        raise ValueError(f"invalid duration {text!r}")
    if negative:
        nanoseconds = -nanoseconds
    return timedelta(microseconds=nanoseconds / 1000)


def _string(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidFindRequest("Param error")
    return value


def _section(data: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise InvalidFindRequest("Param error")
    return value


def parse_find_request(data: str | bytes | dict[str, Any]) -> FindRequest:
    """Build a FindRequest from JSON text or a decoded mapping."""
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except ValueError:
            raise InvalidFindRequest("Param error") from None
    if not isinstance(data, dict):
        raise InvalidFindRequest("Param error")

    match_data = _section(data, "match") or {}
    regexp = _section(match_data, "regexp")
    xpath = _section(match_data, "xpath")
    js = _section(match_data, "js")
    match = Match(
        type=_string(match_data, "type"),
        regexp=None if regexp is None
        else MatchRegExp(_string(regexp, "selector"), _string(regexp, "value")),
        xpath=None if xpath is None else MatchXPath(_string(xpath, "selector")),
        js=None if js is None else MatchJS(_string(js, "value")),
    )
    return FindRequest(
        location=_string(data, "location"),
        timeout=_string(data, "timeout"),
        match=match,
    )


def check_find_request(request: FindRequest) -> timedelta:
    """Validate ``request`` and return the page timeout it asks for."""
    if not request.location:
        raise InvalidFindRequest("'location' is missing")

    timeout = request.timeout or DEFAULT_TIMEOUT
    try:
        duration = parse_duration(timeout)
    except ValueError:
        raise InvalidFindRequest("'timeout' is invalid") from None

    match = request.match
    if match.type not in set(MatchType):
        raise InvalidFindRequest("'match.type' should be 'regexp', 'xpath', or 'js'")

    if match.type == MatchType.REGEXP:
        if match.regexp is None:
            raise InvalidFindRequest("'match.regexp' payload is missing")
        if not match.regexp.value:
            raise InvalidFindRequest("'match.regexp.value' must be specified")
    elif match.type == MatchType.XPATH:
        if match.xpath is None:
            raise InvalidFindRequest("'match.xpath' payload is missing")
        if not match.xpath.selector:
            raise InvalidFindRequest("'match.xpath.selector' must be specified")
    else:
        if match.js is None:
            raise InvalidFindRequest("'match.js' payload is missing")
        if not match.js.value:
            raise InvalidFindRequest("'match.js.value' must be specified")

    return duration


def _join_path(base: str, extra: str) -> str:
    joined = re.sub("/+", "/", f"{base}/{extra}")
    return posixpath.normpath(joined)


class HeadlessClient:
    """Talks to a headless browser service over HTTP."""

    def __init__(self, url: str, session: requests.Session | None = None,
                 timeout: float | None = None):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def find(self, request: FindRequest) -> str:
        """Ask the service for the text matching ``request``; returns the content found."""
        parts = urlsplit(self.url)
        target = urlunsplit(parts._replace(path=_join_path(parts.path, "/v1/find")))
        with self.session.post(
            target,
            data=json.dumps(request.to_dict()),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        ) as response:
            body = response.json()
        if not isinstance(body, dict):
            raise ValueError("find response is not a JSON object")
        content = body.get("content") or ""
        if not isinstance(content, str):
            raise ValueError("find response content is not a string")
        return content