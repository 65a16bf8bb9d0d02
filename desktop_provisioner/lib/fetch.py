from __future__ import annotations

import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional
from urllib.parse import quote, urlsplit, urlunsplit
from urllib.request import url2pathname

import requests

from ..errors import ConfigurationError, DownloadError

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = {"http", "https"}
CHUNK_SIZE = 1024 * 1024


def is_remote(source: str) -> bool:
    return urlsplit(source).scheme.lower() in REMOTE_SCHEMES


def artifact_url(source: str, name: str, query_token: Optional[str] = None) -> str:
    """Resolve an artifact name against a source location.

    Remote sources get the (optional) SAS-style query token appended; local
    and UNC sources are joined as plain paths.
    """

    if not is_remote(source):
        return os.path.join(source, name)

    parts = urlsplit(source)
    path = parts.path.rstrip("/") + "/" + quote(name)
    query = parts.query
    token = (query_token or "").lstrip("?")
    if token:
        query = f"{query}&{token}" if query else token
    return urlunsplit((parts.scheme, parts.netloc, path, query, ""))


def _redact(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "<redacted>", ""))


def _transfer(url: str, destination: Path, *, session: requests.Session, timeout: float) -> None:
    if is_remote(url):
        with session.get(url, stream=True, timeout=timeout) as r:
            r.raise_for_status()
            with destination.open("wb") as f:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        return

    src = url
    if urlsplit(url).scheme.lower() == "file":
        src = url2pathname(urlsplit(url).path)
    shutil.copyfile(src, destination)


def fetch(
    url: str,
    destination: str | Path,
    retries: int = 3,
    delay_seconds: float = 10.0,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Path:
    """Download (or copy) ``url`` to ``destination`` with bounded retries.

    Any exception, or a missing / zero-byte result, counts as a failed
    attempt. Attempts are separated by ``delay_seconds``; after ``retries``
    failed attempts a DownloadError is raised. The destination is simply
    overwritten on every attempt, and a failed fetch may leave it behind.
    """

    if retries < 1:
        raise ConfigurationError(f"retries must be >= 1, got {retries}")

    if session is None:
        with requests.Session() as owned:
            return fetch(url, destination, retries, delay_seconds, session=owned, timeout=timeout, sleep=sleep)

    dest = Path(destination)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shown = _redact(url)

    last_error: Optional[BaseException] = None
    for attempt in range(1, retries + 1):
        try:
            logger.info("Fetching %s -> %s (attempt %d/%d)", shown, dest, attempt, retries)
            _transfer(url, dest, session=session, timeout=timeout)
            if not dest.exists() or dest.stat().st_size == 0:
                raise DownloadError(f"{dest.name}: transfer produced an empty file")
            logger.info("Fetched %s (%d bytes)", dest.name, dest.stat().st_size)
            return dest
        except Exception as e:
            last_error = e
            logger.warning("Fetch attempt %d/%d for %s failed: %s", attempt, retries, dest.name, e)
            if attempt < retries:
                sleep(delay_seconds)

    raise DownloadError(f"Failed to fetch {shown} after {retries} attempts: {last_error}")


def fetch_artifacts(
    source: str,
    names: Iterable[str],
    dest_dir: str | Path,
    *,
    retries: int = 3,
    delay_seconds: float = 10.0,
    query_token: Optional[str] = None,
    optional: Iterable[str] = (),
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    dry_run: bool = False,
) -> Dict[str, Path]:
    """Fetch every named artifact into ``dest_dir``.

    Returns name -> local path for the artifacts that materialized. A failure
    on a name listed in ``optional`` is logged and skipped; any other failure
    propagates.
    """

    if session is None and not dry_run:
        with requests.Session() as owned:
            return fetch_artifacts(
                source,
                names,
                dest_dir,
                retries=retries,
                delay_seconds=delay_seconds,
                query_token=query_token,
                optional=optional,
                session=owned,
                sleep=sleep,
            )

    optional_names = set(optional)
    out: Dict[str, Path] = {}

    for name in names:
        dest = Path(dest_dir) / name
        if dry_run:
            logger.info("DRY-RUN fetch %s -> %s", _redact(artifact_url(source, name, query_token)), dest)
            out[name] = dest
            continue
        try:
            out[name] = fetch(
                artifact_url(source, name, query_token),
                dest,
                retries,
                delay_seconds,
                session=session,
                sleep=sleep,
            )
        except DownloadError as e:
            if name not in optional_names:
                raise
            logger.warning("Optional artifact %s unavailable: %s", name, e)

    return out
