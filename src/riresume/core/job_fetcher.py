from __future__ import annotations

import logging
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from riresume.config import get_settings
from riresume.types import JobPosting

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}
MAX_DESCRIPTION_CHARS = 20_000


def _download(url: str, timeout_sec: int | None) -> str | None:
    timeout = timeout_sec or get_settings().job_fetch_timeout_sec
    try:
        response = requests.get(url, timeout=timeout, headers=BROWSER_HEADERS)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Could not download job posting %s: %s", url, exc)
        return None
    return response.text


def _visible_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "noscript", "nav", "footer", "header"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)[:MAX_DESCRIPTION_CHARS]


def _meta(soup: BeautifulSoup, prop: str) -> str:
    tag = soup.find("meta", attrs={"property": prop}) or soup.find("meta", attrs={"name": prop})
    return str(tag.get("content", "")).strip() if tag else ""


def fetch_job_text(url: str, timeout_sec: int | None = None) -> str:
    """Readable text of a job posting page, or ``""`` when it cannot be fetched."""
    html = _download(url, timeout_sec)
    if html is None:
        return ""
    return _visible_text(BeautifulSoup(html, "html.parser"))


def fetch_job_posting(url: str, timeout_sec: int | None = None) -> JobPosting | None:
    html = _download(url, timeout_sec)
    if html is None:
        return None

    soup = BeautifulSoup(html, "html.parser")
    title = _meta(soup, "og:title") or (soup.title.get_text(strip=True) if soup.title else "")
    company = _meta(soup, "og:site_name") or urlparse(url).netloc.removeprefix("www.")
    return JobPosting(
        title=title,
        company=company,
        url=url,
        description=_visible_text(soup),
    )
