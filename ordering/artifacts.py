"""Artifact collector: produced report filenames, in the order they were produced"""
from __future__ import annotations

import asyncio
import re
from typing import Awaitable, Callable, Optional

from ordering import tools
from ordering.config import DOWNLOAD_PACING_SECONDS, REPORTS_URL_TEMPLATE
from ordering.errors import OrderValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

Fetch = Callable[[str, str], Awaitable[dict]]


class ArtifactCollector:

    def __init__(self, url_template: str = REPORTS_URL_TEMPLATE,
                 pacing_seconds: float = DOWNLOAD_PACING_SECONDS,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._filenames: list[str] = []
        self.url_template = url_template
        self.pacing_seconds = pacing_seconds
        self._sleep = sleep

    def append(self, filename: str) -> None:
        self._filenames.append(filename)
        print(f"[ORDER] Collected {filename} ({len(self._filenames)} total)")

    def count(self) -> int:
        return len(self._filenames)

    def list(self) -> list[str]:
        return list(self._filenames)

    def clear(self) -> None:
        self._filenames = []

    def url_for(self, filename: str) -> str:
        return self.url_template.format(filename=filename)

    async def send_by_email(self, address: str, matter_label: str = "Matter",
                            document_id: Optional[str] = None) -> dict:
        """Hand every collected report to the email service."""
        address = (address or "").strip()
        if not self._filenames:
            raise OrderValidationError("No reports to send yet")
        if not EMAIL_PATTERN.match(address):
            raise OrderValidationError(f"{address or 'Empty address'} is not a valid email address")

        result = await tools.send_reports(address, self.list(), matter_label or "Matter", document_id)
        if result.get("error"):
            return {"success": False, "error": result["error"]}
        return {"success": result.get("success", False), "count": len(self._filenames)}

    async def download_all(self, fetch: Optional[Fetch] = None) -> list[dict]:
        """Fetch each report in turn, pausing between them."""
        fetch = fetch or tools.download_report
        results = []
        filenames = self.list()
        for i, filename in enumerate(filenames):
            results.append(await fetch(self.url_for(filename), filename))
            if i < len(filenames) - 1 and self.pacing_seconds > 0:
                await self._sleep(self.pacing_seconds)
        print(f"[DOWNLOAD] {sum(1 for r in results if r.get('ok'))}/{len(results)} reports retrieved")
        return results
