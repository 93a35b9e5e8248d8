"""Default fetch-and-clean collaborator: download a page and reduce it to plain text.

Errors never escape; an unusable page is reported as empty text and the
ingestor turns that into NoContent.
"""

from __future__ import annotations

import logging
import re
from typing import Protocol

import aiohttp
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

_BLANK_RUNS = re.compile(r"[ \t\r\f\v]+")


class DocumentFetcher(Protocol):
    async def fetch_clean_text(self, url: str) -> str: ...


def html_to_text(html: str) -> str:
    """Prefer <main>, then <article>, then <body>; drop scripts and styles."""
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    root = soup.find("main") or soup.find("article") or soup.body or soup
    lines = (_BLANK_RUNS.sub(" ", line).strip() for line in root.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


class HtmlDocumentFetcher:
    def __init__(self, timeout: float = 20.0, max_bytes: int = 5_000_000):
        self.timeout = timeout
        self.max_bytes = max_bytes

    async def _get(self, session: aiohttp.ClientSession, url: str) -> str:
        async with session.get(url, allow_redirects=True) as resp:
            resp.raise_for_status()
            raw = await resp.content.read(self.max_bytes)
            return raw.decode(resp.charset or "utf-8", errors="ignore")

    async def fetch_clean_text(self, url: str) -> str:
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                html = await self._get(session, url)
        except Exception as e:
            logger.error(f"[fetcher] Error scraping document {url}: {e}")
            return ""
        text = html_to_text(html)
        logger.info(f"[fetcher] {url}: {len(text)} chars of clean text")
        return text
