"""Playwright-backed transport that drives the Grain web app."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Response,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from grainup.config.models import CredentialSettings, UploadSettings

from .errors import AuthenticationError, SubmissionError
from .transport import ObservedResponse

LOGGER = logging.getLogger(__name__)

_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--no-first-run",
    "--disable-gpu",
]


class BrowserTransport:
    """Upload transport using a dedicated Chromium instance per file.

    Every JSON response the browser context receives is parsed and queued so
    the upload session can classify it. Page-structure details come from
    :class:`~grainup.config.models.SelectorSettings`.
    """

    def __init__(self, settings: UploadSettings, *, headless: bool | None = None) -> None:
        self._settings = settings
        self._headless = settings.headless if headless is None else headless
        self._timeout_ms = settings.action_timeout_seconds * 1000
        self._responses: asyncio.Queue[ObservedResponse] = asyncio.Queue()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._pending: set[asyncio.Task[None]] = set()

    async def authenticate(self, credentials: CredentialSettings) -> None:
        page = await self._ensure_page()
        selectors = self._settings.selectors
        try:
            LOGGER.info("Opening login page %s", self._settings.login_url)
            await page.goto(self._settings.login_url, wait_until="domcontentloaded")
            if selectors.sso_button_text:
                await page.get_by_text(selectors.sso_button_text, exact=False).first.click()
            await page.fill(selectors.email_input, credentials.email or "")
            await page.click(selectors.email_next_button)
            await page.fill(selectors.password_input, credentials.password or "")
            await page.click(selectors.password_submit_button)
            await page.wait_for_url(self._is_authenticated_url, wait_until="domcontentloaded")
        except PlaywrightTimeoutError as exc:
            await self._capture("login-error")
            raise AuthenticationError(
                f"Login did not complete (last page: {page.url}): {exc.message}"
            ) from exc
        except PlaywrightError as exc:
            await self._capture("login-error")
            raise AuthenticationError(f"Login failed: {exc.message}") from exc
        LOGGER.info("Authenticated; now at %s", page.url)

    async def submit(self, path: Path) -> None:
        page = await self._ensure_page()
        selectors = self._settings.selectors
        try:
            await page.goto(self._settings.upload_url, wait_until="domcontentloaded")
            if selectors.upload_trigger:
                await page.click(selectors.upload_trigger)
            file_input = page.locator(selectors.file_input).first
            await file_input.wait_for(state="attached")
            await file_input.set_input_files(str(path))
        except PlaywrightError as exc:
            await self._capture("submit-error")
            raise SubmissionError(f"Could not hand {path.name} to the upload control: {exc.message}") from exc
        LOGGER.info("Submitted %s for upload", path.name)

    async def next_response(self) -> ObservedResponse:
        return await self._responses.get()

    async def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        try:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
        finally:
            self._context = None
            self._browser = None
            self._page = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    async def _ensure_page(self) -> Page:
        if self._page is not None:
            return self._page
        LOGGER.debug("Launching Chromium (headless=%s)", self._headless)
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._headless,
            args=_BROWSER_ARGS,
            timeout=self._timeout_ms,
        )
        self._context = await self._browser.new_context(
            user_agent=self._settings.user_agent,
            viewport={"width": 1280, "height": 800},
        )
        self._context.set_default_timeout(self._timeout_ms)
        self._context.on("response", self._on_response)
        self._page = await self._context.new_page()
        return self._page

    def _on_response(self, response: Response) -> None:
        task = asyncio.get_running_loop().create_task(self._record(response))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record(self, response: Response) -> None:
        body: Any = None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                body = await response.json()
            except (PlaywrightError, ValueError):
                body = None
        self._responses.put_nowait(
            ObservedResponse(
                url=response.url,
                status=response.status,
                method=response.request.method,
                body=body,
                received_at=datetime.now(timezone.utc),
            )
        )

    def _is_authenticated_url(self, url: str) -> bool:
        return not any(marker in url for marker in self._settings.login_markers)

    async def _capture(self, label: str) -> None:
        directory = self._settings.diagnostics_dir
        if directory is None or self._page is None:
            return
        target_dir = directory.expanduser()
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        target = target_dir / f"{label}-{stamp}.png"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            await self._page.screenshot(path=str(target), full_page=True)
        except (OSError, PlaywrightError) as exc:
            LOGGER.debug("Could not save diagnostic screenshot %s: %s", target, exc)
            return
        LOGGER.info("Diagnostic screenshot saved to %s", target)


__all__ = ["BrowserTransport"]
