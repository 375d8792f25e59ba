"""
Fetch a single file over HTTP into the local cache.

Partial transfers are kept as ``<dest>.part`` and resumed with a Range
request on the next attempt. An existing ``dest`` is never fetched again.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import requests

from pocket_embed.errors import EmbedError, ErrorKind

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 16
BACKOFF_SEC = 0.5

ProgressFn = Callable[[int, int], None]  # (bytes written, bytes expected)


@dataclass(frozen=True)
class DownloadStatus:
    path: Path
    status_code: int | None  # None when the file was already on disk
    bytes_written: int
    attempts: int = 0


def _part_path(dest: Path) -> Path:
    return dest.with_name(dest.name + ".part")


def _expected_total(resp: requests.Response, offset: int) -> int:
    # Content-Range: bytes 100-999/1000
    content_range = resp.headers.get("Content-Range", "")
    if "/" in content_range:
        tail = content_range.rsplit("/", 1)[1]
        if tail.isdigit():
            return int(tail)
    length = resp.headers.get("Content-Length")
    if length and length.isdigit():
        return int(length) + offset
    return 0


def _attempt(url: str, part: Path, on_progress: ProgressFn | None, timeout: float) -> int:
    offset = part.stat().st_size if part.exists() else 0
    headers = {"Range": f"bytes={offset}-"} if offset else {}

    with requests.get(url, headers=headers, stream=True, timeout=timeout) as resp:
        if resp.status_code == 416 and offset:
            # server says our partial file is already complete
            return resp.status_code
        if resp.status_code not in (200, 206):
            raise EmbedError(
                ErrorKind.DOWNLOAD_FAILURE,
                f"failed to download {url}. Status: {resp.status_code}",
            )
        if resp.status_code == 200 and offset:
            logger.info("server ignored range request for %s, restarting", url)
            offset = 0
        total = _expected_total(resp, offset)
        mode = "ab" if offset else "wb"
        written = offset
        with open(part, mode) as fh:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                fh.write(chunk)
                written += len(chunk)
                if on_progress is not None:
                    on_progress(written, total)
        return resp.status_code


def fetch(
    url: str,
    dest: str | Path,
    on_progress: ProgressFn | None = None,
    retries: int = 3,
    timeout: float = 30.0,
) -> DownloadStatus:
    """
    Download ``url`` to ``dest``. Retries up to ``retries`` times, then raises
    EmbedError(DOWNLOAD_FAILURE). Exceptions raised by ``on_progress`` abort
    the transfer immediately (the .part file is kept for a later resume).
    """
    dest = Path(dest)
    if dest.exists():
        if on_progress is not None:
            on_progress(1, 1)
        return DownloadStatus(path=dest, status_code=None, bytes_written=0)

    dest.parent.mkdir(parents=True, exist_ok=True)
    part = _part_path(dest)
    last_error: Exception | None = None

    for attempt in range(1, max(retries, 1) + 1):
        try:
            status = _attempt(url, part, on_progress, timeout)
        except (requests.RequestException, OSError, EmbedError) as e:
            last_error = e
            logger.warning("download attempt %d/%d for %s failed: %s", attempt, retries, url, e)
            if attempt < retries:
                time.sleep(BACKOFF_SEC * attempt)
            continue
        size = part.stat().st_size if part.exists() else 0
        part.replace(dest)
        if on_progress is not None:
            on_progress(size, size)
        logger.info("downloaded %s (%d bytes)", dest.name, size)
        return DownloadStatus(path=dest, status_code=status, bytes_written=size, attempts=attempt)

    if isinstance(last_error, EmbedError):
        raise last_error
    raise EmbedError(
        ErrorKind.DOWNLOAD_FAILURE,
        f"failed to download {url} after {retries} attempts: {last_error}",
    ) from last_error
