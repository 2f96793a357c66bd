"""Console log sink and download progress.

The build core never renders output itself; it reports through a
``Console`` exposing ``info/warn/error/ok/debug`` and
``download_with_progress``. Output is rendered with Rich. One shared
progress display serves all concurrently downloading workers.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import httpx
from rich.console import Console as RichConsole
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)

logger = logging.getLogger(__name__)

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600


class Console:
    """Leveled, colored status output plus a progress-reporting downloader.

    Attributes:
        verbosity: 0 = errors only, 1 = normal, 2 = debug.
    """

    def __init__(
        self,
        console: RichConsole | None = None,
        verbosity: int = 1,
        client: httpx.Client | None = None,
        timeout: float = DOWNLOAD_TIMEOUT,
    ) -> None:
        self.console = console or RichConsole(stderr=True)
        self.verbosity = verbosity
        self.timeout = timeout
        self._client = client
        self._lock = threading.Lock()
        self._progress: Progress | None = None
        self._active_downloads = 0

    def _emit(self, level: int, marker: str, message: str) -> None:
        threshold = {0: logging.ERROR, 1: logging.INFO}.get(self.verbosity, logging.DEBUG)
        if level >= threshold:
            self.console.print(f"{marker} {message}", highlight=False)

    def info(self, message: str) -> None:
        """Report progress information."""
        self._emit(logging.INFO, "[blue]→[/blue]", message)

    def ok(self, message: str) -> None:
        """Report a successful outcome."""
        self._emit(logging.INFO, "[green]✔[/green]", message)

    def warn(self, message: str) -> None:
        """Report a recoverable problem."""
        self._emit(logging.WARNING, "[yellow]![/yellow]", message)

    def error(self, message: str) -> None:
        """Report a failure. Always shown."""
        self._emit(logging.ERROR, "[red]✖[/red]", message)

    def debug(self, message: str) -> None:
        """Report debugging detail (verbosity >= 2)."""
        self._emit(logging.DEBUG, "[magenta]·[/magenta]", message)

    def _start_task(self, description: str, total: int | None) -> int:
        with self._lock:
            if self._progress is None:
                self._progress = Progress(
                    TextColumn("[bold blue]{task.description}"),
                    BarColumn(),
                    DownloadColumn(),
                    TransferSpeedColumn(),
                    console=self.console,
                    transient=True,
                    disable=self.verbosity < 1,
                )
                self._progress.start()
            self._active_downloads += 1
            return self._progress.add_task(description, total=total)

    def _advance_task(self, task_id: int, advance: int) -> None:
        with self._lock:
            if self._progress is not None:
                self._progress.update(task_id, advance=advance)

    def _finish_task(self, task_id: int) -> None:
        with self._lock:
            if self._progress is None:
                return
            self._progress.remove_task(task_id)
            self._active_downloads -= 1
            if self._active_downloads == 0:
                self._progress.stop()
                self._progress = None

    def download_with_progress(self, url: str, dest_path: Path) -> bool:
        """Download a URL to a file while rendering a progress bar.

        The body is streamed to ``<dest>.part`` and renamed on success, so
        an interrupted transfer never leaves a partial file at ``dest_path``.

        Args:
            url: URL to download.
            dest_path: Destination file path.

        Returns:
            True on success, False on any HTTP or network failure.
        """
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        part_path = dest_path.with_name(dest_path.name + ".part")
        client = self._client or httpx.Client(follow_redirects=True)
        task_id: int | None = None

        try:
            with client.stream("GET", url, timeout=self.timeout) as response:
                response.raise_for_status()
                length = response.headers.get("content-length")
                total = int(length) if length and length.isdigit() else None
                task_id = self._start_task(dest_path.name, total)

                with part_path.open("wb") as f:
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
                        self._advance_task(task_id, len(chunk))

            part_path.replace(dest_path)
            logger.info("Downloaded %s to %s", url, dest_path)
            return True

        except httpx.HTTPStatusError as e:
            self.error(
                f"HTTP error downloading {url}: "
                f"{e.response.status_code} {e.response.reason_phrase}"
            )
        except httpx.TimeoutException:
            self.error(f"Timeout downloading {url}")
        except httpx.RequestError as e:
            self.error(f"Network error downloading {url}: {e}")
        except OSError as e:
            self.error(f"Cannot write {dest_path}: {e}")
        finally:
            if task_id is not None:
                self._finish_task(task_id)
            if self._client is None:
                client.close()

        part_path.unlink(missing_ok=True)
        return False


def setup_logging(
    level: str = "INFO",
    console: RichConsole | None = None,
) -> None:
    """Configure root logging with a Rich handler.

    Args:
        level: Logging level name.
        console: Optional Rich console to log through.
    """
    handler = RichHandler(
        console=console or RichConsole(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=level,
        format="%(threadName)s %(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


__all__ = ["Console", "DOWNLOAD_CHUNK_SIZE", "setup_logging"]
