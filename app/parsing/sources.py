from __future__ import annotations

import contextlib
import ipaddress
import logging
import os
import re
import socket
import tempfile
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import httpx

from .models import SourceKind

logger = logging.getLogger(__name__)

RELATIVE_PREFIXES = ("/api", "/uploads")
DOWNLOAD_USER_AGENT = "ResumeAnalysis OCR Service/1.0"


class ExtractionError(RuntimeError):
    def __init__(self, message: str, *, reason: str = "extraction_failed"):
        super().__init__(message)
        self.reason = reason


def _safe_str(value: Any, max_len: int = 255) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    return text[:max_len]


def classify_source(source: str) -> SourceKind:
    value = (source or "").strip()
    if not value:
        raise ExtractionError("Document reference is empty.", reason="empty_source")
    lowered = value.lower()
    if lowered.startswith("http://") or lowered.startswith("https://"):
        return "url"
    if value.startswith(RELATIVE_PREFIXES):
        return "relative_url"
    if lowered.startswith("data:"):
        return "base64"
    if os.path.isfile(value):
        return "file_path"
    raise ExtractionError(
        "Unsupported document reference. Use an http(s) URL, an uploads path, a data URI, or a local file.",
        reason="unsupported_source",
    )


def resolve_relative_url(reference: str, base_url: str) -> str:
    return f"{base_url.rstrip('/')}{reference}"


def normalize_public_url(raw_url: str) -> tuple[str, str]:
    value = (raw_url or "").strip()
    parsed = urlparse(value)
    if parsed.scheme.lower() not in {"http", "https"}:
        raise ExtractionError("Only http/https document URLs are supported.", reason="unsupported_source")
    hostname = (parsed.hostname or "").lower().strip()
    if not parsed.netloc or not hostname:
        raise ExtractionError("Invalid document URL host.", reason="unsupported_source")
    normalized = urlunparse(
        (
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            parsed.path or "/",
            "",
            parsed.query,
            "",
        )
    )
    return normalized, hostname


def _is_internal_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved


def host_is_private_or_local(hostname: str) -> bool:
    """True when the host names, or resolves to, a loopback or private network address."""
    host = (hostname or "").strip().lower().strip("[]")
    if host == "localhost" or host.endswith(".local") or _is_internal_address(host):
        return True
    try:
        resolved = socket.getaddrinfo(host, None)
    except OSError:
        return False
    return any(_is_internal_address(str(entry[4][0])) for entry in resolved if entry[4])


def _with_query(parsed: Any, netloc: str, path: str, **params: str) -> str:
    query = {key: values[-1] for key, values in parse_qs(parsed.query or "").items()}
    query.update(params)
    return urlunparse(("https", netloc, path, "", urlencode(query), ""))


def _google_drive_download(parsed: Any, host: str) -> str | None:
    if "drive.google.com" not in host:
        return None
    match = re.search(r"/file/d/([^/]+)", parsed.path or "")
    file_id = match.group(1) if match else (parse_qs(parsed.query or "").get("id") or [""])[0]
    file_id = _safe_str(file_id, max_len=200)
    if not file_id:
        return None
    return f"https://drive.google.com/uc?export=download&id={file_id}"


def _dropbox_download(parsed: Any, host: str) -> str | None:
    if "dropbox" not in host or not parsed.path:
        return None
    netloc = host.removeprefix("www.")
    if netloc == "dropbox.com":
        netloc = "dl.dropboxusercontent.com"
    return _with_query(parsed, netloc, parsed.path, dl="1")


def _onedrive_download(parsed: Any, host: str) -> str | None:
    if host not in {"1drv.ms", "onedrive.live.com"}:
        return None
    return _with_query(parsed, host, parsed.path or "/", download="1")


SHARE_LINK_REWRITERS = (_google_drive_download, _dropbox_download, _onedrive_download)


def normalize_download_url(url: str) -> str:
    """Turn cloud-drive share pages into direct file downloads; other URLs pass through."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    for rewrite in SHARE_LINK_REWRITERS:
        direct = rewrite(parsed, host)
        if direct:
            return direct
    return url


def _temp_suffix(url: str) -> str:
    return ".pdf" if "pdf" in url.lower() else ".jpg"


@contextlib.contextmanager
def downloaded_source(
    url: str,
    *,
    timeout_s: float,
    max_bytes: int,
    transport: httpx.BaseTransport | None = None,
) -> Iterator[Path]:
    """Download `url` into a temp file and yield its path; the file is removed on every exit path."""
    handle, raw_path = tempfile.mkstemp(prefix="ocr-temp-", suffix=_temp_suffix(url))
    temp_path = Path(raw_path)
    try:
        try:
            with os.fdopen(handle, "wb") as sink:
                with httpx.Client(
                    timeout=timeout_s,
                    follow_redirects=True,
                    headers={"User-Agent": DOWNLOAD_USER_AGENT},
                    transport=transport,
                ) as client:
                    with client.stream("GET", url) as response:
                        if response.status_code >= 400:
                            raise ExtractionError(
                                f"Document download returned HTTP {response.status_code}.",
                                reason="download_failed",
                            )
                        written = 0
                        for chunk in response.iter_bytes():
                            written += len(chunk)
                            if written > max_bytes:
                                raise ExtractionError(
                                    "Document is too large to process.",
                                    reason="download_too_large",
                                )
                            sink.write(chunk)
        except httpx.TimeoutException as exc:
            raise ExtractionError("Document download timed out.", reason="download_timeout") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Failed to download document: {exc}", reason="download_failed") from exc
        if written == 0:
            raise ExtractionError("Document download returned an empty file.", reason="download_failed")
        logger.info("ocr_source_downloaded bytes=%s suffix=%s", written, temp_path.suffix)
        yield temp_path
    finally:
        with contextlib.suppress(FileNotFoundError):
            temp_path.unlink()
