#!/usr/bin/env python3
# /// script
# requires-python = ">=3.10"
# dependencies = ["httpx", "rich"]
# ///
"""Streaming Unlock Checker.

Probes Netflix and YouTube Premium from this host's network egress and
reports which catalogs are unlocked and in which region.

Usage:
    uv run stream_check.py           # default route
    uv run stream_check.py -4        # bind to IPv4
    uv run stream_check.py -I eth0   # bind to specific interface
    uv run stream_check.py --json    # emit panel object as JSON
"""
from __future__ import annotations

import argparse
import asyncio
import ipaddress
import logging
import os
import re
import subprocess
import sys
from dataclasses import dataclass, field
from enum import Enum
from collections.abc import Awaitable, Mapping
from functools import partial
from typing import Callable

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

logger = logging.getLogger("stream_check")

# ── Constants ──────────────────────────────────────────────────────────────────

UA_BROWSER = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36"
)

# Accept-Language decides which locale the Premium page is served in.
REQUEST_HEADERS = {
    "User-Agent": UA_BROWSER,
    "Accept-Language": "en",
}

NETFLIX_TITLE_URL = "https://www.netflix.com/title/{}"
NETFLIX_FULL_TITLE = "81215567"
NETFLIX_ORIGINALS_TITLE = "80018499"
NETFLIX_LOCALE_HEADER = "x-originating-url"
NETFLIX_NO_LOCALE_SEGMENT = "title"

YOUTUBE_PREMIUM_URL = "https://www.youtube.com/premium"
YOUTUBE_NOT_AVAILABLE = "Premium is not available in your country"
YOUTUBE_CN_MARKER = "www.google.cn"
YOUTUBE_COUNTRY_RE = re.compile(r'"countryCode":"([^"]*)"')

REPORT_TITLE = "流媒体解锁检测"

DEFAULT_TIMEOUT = 15.0
DEFAULT_LOG_LEVEL = "WARNING"


# ── Configuration ──────────────────────────────────────────────────────────────

def _float_env(name: str, default: float) -> float:
    try:
        value = os.getenv(name)
        return float(value) if value is not None else default
    except ValueError:
        return default


@dataclass
class Settings:
    timeout: float = DEFAULT_TIMEOUT
    local_address: str | None = None
    log_level: str = DEFAULT_LOG_LEVEL


def load_settings() -> Settings:
    """Build settings from STREAM_CHECK_* environment variables."""
    return Settings(
        timeout=_float_env("STREAM_CHECK_TIMEOUT", DEFAULT_TIMEOUT),
        log_level=os.getenv("STREAM_CHECK_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
    )


def setup_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.WARNING
    logging.basicConfig(
        level=numeric,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ── Data Models ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProbeRequest:
    url: str
    headers: Mapping[str, str] = field(default_factory=lambda: dict(REQUEST_HEADERS))


@dataclass
class ProbeOutcome:
    """Result of one HTTP attempt: either ``error`` or ``status_code`` is set."""

    error: Exception | None = None
    status_code: int | None = None
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: str = ""


Fetch = Callable[[ProbeRequest], Awaitable[ProbeOutcome]]


class UnlockTier(Enum):
    FULL_UNLOCK = "full_unlock"
    ORIGINALS_ONLY = "originals_only"
    NOT_AVAILABLE = "not_available"
    TRANSPORT_FAILURE = "transport_failure"


class Availability(Enum):
    AVAILABLE = "available"
    NOT_AVAILABLE = "not_available"
    TRANSPORT_FAILURE = "transport_failure"


@dataclass(frozen=True)
class NetflixResult:
    tier: UnlockTier
    region: str = ""
    detail: str = ""


@dataclass(frozen=True)
class YouTubeResult:
    availability: Availability
    region: str = ""
    detail: str = ""


@dataclass(frozen=True)
class StatusLine:
    label: str
    rendered: str
    style: str = ""


@dataclass
class Report:
    lines: list[StatusLine]
    title: str = REPORT_TITLE

    @property
    def content(self) -> str:
        return "\n".join(line.rendered for line in self.lines)

    def as_panel(self) -> dict[str, str]:
        return {"title": self.title, "content": self.content}


# ── Utilities ──────────────────────────────────────────────────────────────────

def resolve_interface(name: str, ipv6: bool) -> str:
    """Resolve network interface name to bound IP address (Linux only)."""
    try:
        ipaddress.ip_address(name)
        return name
    except ValueError:
        pass
    family = "6" if ipv6 else "4"
    kind = "inet6" if ipv6 else "inet"
    try:
        result = subprocess.run(
            ["ip", "-o", f"-{family}", "addr", "show", name],
            capture_output=True, text=True, check=False,
        )
        for line in result.stdout.splitlines():
            m = re.search(rf"{kind}\s+(\S+?)/", line)
            if m:
                addr = m.group(1)
                if ipv6 and addr.startswith("fe80"):
                    continue
                return addr
    except FileNotFoundError:
        pass
    sys.exit(f"Error: cannot resolve interface '{name}' to {'IPv6' if ipv6 else 'IPv4'} address")


def extract_netflix_region(originating_url: str) -> str | None:
    """Pull the locale token out of an ``x-originating-url`` value.

    ``https://www.netflix.com/de/title/80018499`` gives ``DE``; the bare
    ``https://www.netflix.com/title/80018499`` carries no locale prefix and
    means the US catalog. Returns None when the URL is too short to hold a
    path segment.
    """
    parts = originating_url.split("/")
    if len(parts) < 4 or not parts[3]:
        return None
    region = parts[3].split("-")[0]
    if region == NETFLIX_NO_LOCALE_SEGMENT:
        region = "us"
    return region.upper()


# ── HTTP & Network ─────────────────────────────────────────────────────────────

def create_client(settings: Settings) -> httpx.AsyncClient:
    transport = httpx.AsyncHTTPTransport(local_address=settings.local_address)
    return httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(settings.timeout, connect=min(settings.timeout, 10.0)),
        follow_redirects=True,
        headers={"User-Agent": UA_BROWSER},
    )


def make_fetch(client: httpx.AsyncClient) -> Fetch:
    """Wrap ``client`` as a fetch capability that never raises httpx errors."""

    async def fetch(request: ProbeRequest) -> ProbeOutcome:
        logger.debug("GET %s", request.url)
        try:
            resp = await client.get(request.url, headers=dict(request.headers))
        except httpx.HTTPError as exc:
            logger.info("GET %s failed: %r", request.url, exc)
            return ProbeOutcome(error=exc)
        logger.debug("GET %s -> %d", request.url, resp.status_code)
        return ProbeOutcome(status_code=resp.status_code, headers=resp.headers, body=resp.text)

    return fetch


# ── Platform Checks ───────────────────────────────────────────────────────────

async def _probe_netflix_title(fetch: Fetch, title_id: str) -> tuple[ProbeOutcome, str | None]:
    outcome = await fetch(ProbeRequest(NETFLIX_TITLE_URL.format(title_id)))
    region = None
    if outcome.error is None and outcome.status_code == 200:
        region = extract_netflix_region(outcome.headers.get(NETFLIX_LOCALE_HEADER, ""))
    return outcome, region


def _netflix_failure(outcome: ProbeOutcome) -> NetflixResult:
    if outcome.error is not None:
        return NetflixResult(UnlockTier.TRANSPORT_FAILURE, detail="Network")
    if outcome.status_code == 200:
        return NetflixResult(UnlockTier.TRANSPORT_FAILURE, detail="No locale header")
    logger.info("Netflix: unexpected HTTP %s", outcome.status_code)
    return NetflixResult(UnlockTier.TRANSPORT_FAILURE, detail=f"HTTP {outcome.status_code}")


async def classify_netflix(fetch: Fetch) -> NetflixResult:
    """Classify Netflix access with at most two title lookups.

    A licensed mainstream title answers 200 (redirected to the local catalog)
    when the full library is unlocked, 403 when the region is blocked, and 404
    when only Netflix originals are served. In the 404 case an originals-only
    title tells apart "originals only" from "not available at all".
    """
    outcome, region = await _probe_netflix_title(fetch, NETFLIX_FULL_TITLE)
    if outcome.error is not None:
        return _netflix_failure(outcome)
    match outcome.status_code:
        case 200 if region:
            return NetflixResult(UnlockTier.FULL_UNLOCK, region=region)
        case 403:
            return NetflixResult(UnlockTier.NOT_AVAILABLE)
        case 404:
            pass
        case _:
            return _netflix_failure(outcome)

    # Mainstream title missing: originals may still be served.
    outcome, region = await _probe_netflix_title(fetch, NETFLIX_ORIGINALS_TITLE)
    if outcome.error is None:
        match outcome.status_code:
            case 200 if region:
                return NetflixResult(UnlockTier.ORIGINALS_ONLY, region=region)
            case 404:
                return NetflixResult(UnlockTier.NOT_AVAILABLE)
    return _netflix_failure(outcome)


async def classify_youtube_premium(fetch: Fetch) -> YouTubeResult:
    """Classify YouTube Premium availability from the landing page.

    The region comes from the ``countryCode`` field of the inline page data,
    falling back to CN on a google.cn marker and to US otherwise. The
    fallbacks are a heuristic; an unmatched page is not treated as an error.
    """
    outcome = await fetch(ProbeRequest(YOUTUBE_PREMIUM_URL))
    if outcome.error is not None:
        return YouTubeResult(Availability.TRANSPORT_FAILURE, detail="Network")
    if outcome.status_code != 200:
        logger.info("YouTube Premium: unexpected HTTP %s", outcome.status_code)
        return YouTubeResult(Availability.TRANSPORT_FAILURE, detail=f"HTTP {outcome.status_code}")

    text = outcome.body
    if YOUTUBE_NOT_AVAILABLE in text:
        return YouTubeResult(Availability.NOT_AVAILABLE)

    m = YOUTUBE_COUNTRY_RE.search(text)
    if m:
        region = m.group(1)
    elif YOUTUBE_CN_MARKER in text:
        region = "CN"
    else:
        logger.debug("YouTube Premium: no region signal, assuming US")
        region = "US"
    return YouTubeResult(Availability.AVAILABLE, region=region.upper())


# ── Output Rendering ──────────────────────────────────────────────────────────

FAILED_TEXT = "⚠️ 检测失败，请刷新面板"


def format_netflix(r: NetflixResult) -> StatusLine:
    match r.tier:
        case UnlockTier.FULL_UNLOCK:
            text, style = f"🟢 完整解锁，区域：{r.region.upper()}", "green"
        case UnlockTier.ORIGINALS_ONLY:
            text, style = f"🟡 仅解锁自制剧，区域：{r.region.upper()}", "yellow"
        case UnlockTier.NOT_AVAILABLE:
            text, style = "🔴 不支持解锁", "red"
        case _:
            text, style = FAILED_TEXT, "dim red"
    return StatusLine("Netflix", f"Netflix：{text}", style)


def format_youtube(r: YouTubeResult) -> StatusLine:
    match r.availability:
        case Availability.AVAILABLE:
            text, style = f"🟢 解锁 Premium，区域：{r.region.upper()}", "green"
        case Availability.NOT_AVAILABLE:
            text, style = "🔴 不支持解锁 Premium", "red"
        case _:
            text, style = FAILED_TEXT, "dim red"
    return StatusLine("YouTube", f"YouTube：{text}", style)


def render_report(console: Console, report: Report) -> None:
    body = Text()
    for i, line in enumerate(report.lines):
        if i:
            body.append("\n")
        body.append(line.rendered, style=line.style)
    console.print(Panel(
        body,
        title=f"[bold cyan]{report.title}[/bold cyan]",
        border_style="cyan",
        padding=(1, 2),
    ))


def print_json(console: Console, report: Report) -> None:
    console.print_json(data=report.as_panel())


# ── Report Builder ────────────────────────────────────────────────────────────

NetflixClassifier = Callable[[Fetch], Awaitable[NetflixResult]]
YouTubeClassifier = Callable[[Fetch], Awaitable[YouTubeResult]]
Sink = Callable[[Report], None]


async def _netflix_line(classify: NetflixClassifier, fetch: Fetch) -> StatusLine:
    try:
        result = await classify(fetch)
    except Exception:
        logger.exception("Netflix check crashed")
        result = NetflixResult(UnlockTier.TRANSPORT_FAILURE, detail="Crashed")
    logger.debug("Netflix: %s", result)
    return format_netflix(result)


async def _youtube_line(classify: YouTubeClassifier, fetch: Fetch) -> StatusLine:
    try:
        result = await classify(fetch)
    except Exception:
        logger.exception("YouTube Premium check crashed")
        result = YouTubeResult(Availability.TRANSPORT_FAILURE, detail="Crashed")
    logger.debug("YouTube Premium: %s", result)
    return format_youtube(result)


async def build_report(
    fetch: Fetch,
    netflix: NetflixClassifier = classify_netflix,
    youtube: YouTubeClassifier = classify_youtube_premium,
) -> Report:
    """Run both checks concurrently and collect their lines, Netflix first."""
    lines = await asyncio.gather(
        _netflix_line(netflix, fetch),
        _youtube_line(youtube, fetch),
    )
    return Report(list(lines))


async def run(settings: Settings, sink: Sink) -> Report:
    async with create_client(settings) as client:
        report = await build_report(make_fetch(client))
    sink(report)
    return report


# ── CLI & Main ─────────────────────────────────────────────────────────────────

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Netflix & YouTube Premium Unlock Checker",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("-4", "--ipv4", action="store_true", help="Bind to IPv4")
    group.add_argument("-6", "--ipv6", action="store_true", help="Bind to IPv6")
    parser.add_argument(
        "-I", "--interface",
        help="Bind to network interface name or IP address",
    )
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument("--json", action="store_true", help="Print the panel object as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def determine_local_address(args: argparse.Namespace) -> str | None:
    if args.interface:
        return resolve_interface(args.interface, args.ipv6)
    if args.ipv4:
        return "0.0.0.0"
    if args.ipv6:
        return "::"
    return None


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    settings.local_address = determine_local_address(args)
    if args.timeout is not None:
        settings.timeout = args.timeout
    if args.verbose:
        settings.log_level = "DEBUG"
    return settings


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = apply_args(load_settings(), args)
    setup_logging(settings.log_level)
    console = Console()

    sink: Sink
    if args.json:
        sink = partial(print_json, console)
    else:
        sink = partial(render_report, console)
        console.print("[dim]Running Netflix & YouTube Premium checks…[/dim]")

    await run(settings, sink)
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
