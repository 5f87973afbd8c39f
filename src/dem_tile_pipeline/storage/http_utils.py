"""HTTP GET-to-file and archive extraction helpers."""

from __future__ import annotations

import os
import shutil
import tarfile
import time
import zipfile
from typing import List

import requests
from loguru import logger

CHUNK_SIZE = 1024 * 1024


def download_file(url: str, dest: str, timeout: float, session=None) -> str:
    """Stream *url* to *dest* within *timeout* seconds overall.

    *timeout* bounds the whole transfer, not just each socket read, so a
    server trickling bytes still fails with ``requests.Timeout``.  Raises
    ``requests.RequestException`` on transport errors, non-2xx responses
    and timeouts.  A partial file is removed before re-raising.
    """
    deadline = time.monotonic() + timeout
    os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
    getter = session.get if session is not None else requests.get
    try:
        with getter(url, stream=True, timeout=timeout) as r:
            r.raise_for_status()
            expected = int(r.headers.get("Content-Length", 0) or 0)
            written = 0
            with open(dest, "wb") as f:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
                    if time.monotonic() > deadline:
                        raise requests.Timeout(f"Download of {url} exceeded {timeout}s")
            if expected and written < expected:
                raise requests.exceptions.ContentDecodingError(
                    f"Incomplete download of {url}: got {written}, expected {expected} bytes"
                )
    except (requests.RequestException, OSError):
        try:
            os.remove(dest)
        except OSError:
            pass
        raise
    logger.debug(f"Downloaded {url} -> {dest} ({written / 1024:.1f} KB)")
    return dest


def extract_member(archive: str, member: str, dest: str) -> str:
    """Extract exactly one named *member* of the tar *archive* to *dest*.

    The member is addressed by name rather than discovered by listing.
    Raises ``tarfile.TarError`` for corrupt archives, ``KeyError`` for a
    missing member and ``OSError`` for filesystem errors.
    """
    os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
    with tarfile.open(archive) as tar:
        src = tar.extractfile(tar.getmember(member))
        if src is None:
            raise KeyError(f"{member} is not a regular file in {archive}")
        try:
            with src, open(dest, "wb") as out:
                shutil.copyfileobj(src, out)
        except (tarfile.TarError, OSError):
            try:
                os.remove(dest)
            except OSError:
                pass
            raise
    return dest


def unzip_all(archive: str, dest_dir: str) -> List[str]:
    """Extract a zip archive and return the extracted file paths."""
    os.makedirs(dest_dir, exist_ok=True)
    with zipfile.ZipFile(archive) as zf:
        zf.extractall(dest_dir)
        names = [n for n in zf.namelist() if not n.endswith("/")]
    return [os.path.join(dest_dir, n) for n in names]
