"""
External scraper process with a watchdog.

The scraper is a black box: it gets credentials, a target URL, a product cap
and the source ids to skip through its environment, prints
``PROGRESS {json}`` lines while it works and writes a JSON array of product
records to ``OUTPUT_FILE``. The watchdog kills it on an overall timeout or
when no progress line arrives for ``stall_seconds``.
"""
from __future__ import annotations

import json
import logging
import os
import queue
import subprocess
import tempfile
import threading
import time
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from olxsync.exceptions import ScraperError, ScraperTimeoutError
from olxsync.models import ImportLog, ImportStatus, Product, ProductSource, Shop
from olxsync.services.product_import import ImportResult, ProductImporter
from olxsync.settings import settings

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "PROGRESS "
_OUTPUT_TAIL = 20


def _pump(stream, lines: queue.Queue) -> None:
    for line in iter(stream.readline, ""):
        lines.put(line.rstrip("\n"))
    stream.close()
    lines.put(None)


class ScraperRunner:
    def __init__(
        self,
        session: Session,
        shop: Shop,
        command: list[str] | None = None,
        timeout_seconds: float | None = None,
        stall_seconds: float | None = None,
        username: str | None = None,
        password: str | None = None,
    ):
        self.session = session
        self.shop = shop
        self.command = command or list(settings.scraper_command)
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.scraper_timeout_seconds
        self.stall_seconds = stall_seconds if stall_seconds is not None else settings.scraper_stall_seconds
        self.username = username if username is not None else settings.scraper_username
        self.password = password if password is not None else settings.scraper_password

    def _record_progress(self, import_log: ImportLog | None, progress: dict[str, Any]) -> None:
        if import_log is None:
            return
        import_log.last_progress_at = datetime.now(timezone.utc)
        if progress.get("phase"):
            import_log.current_phase = str(progress["phase"])
        if isinstance(progress.get("scraped"), int):
            import_log.scraped_count = progress["scraped"]
        self.session.commit()

    def _fail(self, import_log: ImportLog | None, message: str) -> None:
        if import_log is None:
            return
        import_log.status = ImportStatus.FAILED.value
        import_log.current_phase = "failed"
        import_log.completed_at = datetime.now(timezone.utc)
        import_log.add_error(message)
        self.session.commit()

    def run(
        self,
        url: str,
        max_products: int,
        skip_source_ids: Iterable[str] = (),
        import_log: ImportLog | None = None,
    ) -> list[dict]:
        if not self.username or not self.password:
            raise ScraperError("Scraper username and password are required")

        output_fd, output_path = tempfile.mkstemp(prefix="scrape_", suffix=".json")
        skip_fd, skip_path = tempfile.mkstemp(prefix="skip_", suffix=".json")
        os.close(output_fd)
        with os.fdopen(skip_fd, "w", encoding="utf-8") as handle:
            json.dump(sorted(set(skip_source_ids)), handle)

        env = {
            **os.environ,
            "SCRAPER_USERNAME": self.username,
            "SCRAPER_PASSWORD": self.password,
            "PRODUCT_URL": url,
            "MAX_PRODUCTS": str(max_products),
            "SKIP_SOURCE_IDS_FILE": skip_path,
            "OUTPUT_FILE": output_path,
            "HEADLESS": "true",
        }

        try:
            self._watch(env, import_log)
            with open(output_path, encoding="utf-8") as handle:
                content = handle.read()
            try:
                records = json.loads(content) if content.strip() else []
            except ValueError as e:
                raise ScraperError(f"Scraper output is not valid JSON: {e}") from e
            if not isinstance(records, list):
                raise ScraperError("Scraper output must be a JSON array")
            return [r for r in records if isinstance(r, dict)]
        except ScraperError as e:
            self._fail(import_log, e.message)
            raise
        finally:
            for path in (output_path, skip_path):
                try:
                    os.remove(path)
                except OSError:
                    logger.debug(f"Could not remove temp file {path}")

    def _watch(self, env: dict[str, str], import_log: ImportLog | None) -> None:
        logger.info(f"Starting scraper: {' '.join(self.command)}")
        try:
            process = subprocess.Popen(
                self.command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                env=env,
            )
        except OSError as e:
            raise ScraperError(f"Could not start scraper: {e}") from e

        lines: queue.Queue = queue.Queue()
        threading.Thread(target=_pump, args=(process.stdout, lines), daemon=True).start()

        started = last_progress_at = time.monotonic()
        last_progress: dict[str, Any] = {}
        tail: list[str] = []

        while True:
            now = time.monotonic()
            if self.timeout_seconds and now - started > self.timeout_seconds:
                self._kill(process)
                raise ScraperTimeoutError("timeout", self.timeout_seconds, last_progress)
            if self.stall_seconds and now - last_progress_at > self.stall_seconds:
                self._kill(process)
                raise ScraperTimeoutError("stall", self.stall_seconds, last_progress)

            try:
                line = lines.get(timeout=0.2)
            except queue.Empty:
                continue
            if line is None:
                break

            tail = (tail + [line])[-_OUTPUT_TAIL:]
            if line.startswith(PROGRESS_PREFIX):
                try:
                    progress = json.loads(line[len(PROGRESS_PREFIX):])
                except ValueError:
                    logger.debug(f"Unparseable progress line: {line}")
                    continue
                if isinstance(progress, dict):
                    last_progress = progress
                    last_progress_at = time.monotonic()
                    self._record_progress(import_log, progress)
            else:
                logger.debug(f"[scraper] {line}")

        returncode = process.wait()
        if returncode != 0:
            raise ScraperError(
                f"Scraper exited with code {returncode}",
                context={"output": "\n".join(tail), "last_progress": last_progress},
            )

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        process.kill()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.error(f"Scraper process {process.pid} did not exit after kill")

    def scrape_and_import(
        self,
        url: str,
        max_products: int = 10,
        import_log: ImportLog | None = None,
        importer: ProductImporter | None = None,
    ) -> ImportResult:
        """Scrape, then upsert. Known source ids are passed along so the scraper can skip them."""
        if import_log is None:
            import_log = ImportLog(shop=self.shop, source=ProductSource.SCRAPER.value)
            self.session.add(import_log)
        import_log.status = ImportStatus.PROCESSING.value
        import_log.started_at = datetime.now(timezone.utc)
        import_log.current_phase = "scraping"
        import_log.total_rows = max_products
        self.session.commit()

        known = self.session.scalars(
            select(Product.source_id).where(
                Product.shop_id == self.shop.id,
                Product.source == ProductSource.SCRAPER.value,
                Product.source_id.is_not(None),
            )
        )
        records = self.run(url, max_products, skip_source_ids=list(known), import_log=import_log)
        importer = importer or ProductImporter(self.session, self.shop)
        return importer.import_records(records, source=ProductSource.SCRAPER.value, import_log=import_log)
