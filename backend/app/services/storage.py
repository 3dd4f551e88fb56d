from __future__ import annotations

import logging
import re
import shutil
import uuid
from pathlib import Path

from fastapi import UploadFile

from app.core.settings import settings

logger = logging.getLogger("trial_expenses.storage")

CHUNK_SIZE = 1024 * 1024
RECEIPT_STEM = "receipt"
PARTIAL_SUFFIX = ".part"


def receipts_root() -> Path:
    return Path(settings.receipts_dir)


def _ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _safe_segment(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip()).strip("._")
    return cleaned or "unnamed"


def _resolve_path(storage_key: str) -> Path:
    safe_key = storage_key.strip()
    base = receipts_root().resolve()
    path = (base / safe_key).resolve()
    if str(path) == str(base) or not str(path).startswith(f"{base}/"):
        raise ValueError("Invalid storage key")
    return path


def receipt_prefix(trial_name: str, patient_code: str, visit_name: str, category: str) -> str:
    return "/".join(
        _safe_segment(part) for part in (trial_name, patient_code, visit_name, category)
    )


def receipt_extension(filename: str) -> str:
    suffix = Path(filename).suffix.lstrip(".").lower()
    suffix = re.sub(r"[^a-z0-9]+", "", suffix)
    return suffix or "bin"


def key_in_slot(storage_key: str, prefix: str) -> bool:
    """True when ``storage_key`` names the receipt file of slot ``prefix``."""
    head, _, filename = storage_key.strip().rpartition("/")
    if head != prefix:
        return False
    return re.fullmatch(rf"{RECEIPT_STEM}\.[a-z0-9]+", filename) is not None


def save_receipt(upload_file: UploadFile, *, prefix: str, max_bytes: int) -> tuple[str, int]:
    """Store an upload as the single receipt for ``prefix``.

    The upload lands in a partial file first. Earlier files in the slot are
    only removed once it is complete, so a rejected upload leaves the
    current receipt in place.
    """
    folder = _resolve_path(prefix)
    _ensure_dir(folder)
    storage_key = f"{prefix}/{RECEIPT_STEM}.{receipt_extension(upload_file.filename or '')}"
    path = _resolve_path(storage_key)
    partial = folder / f".{uuid.uuid4().hex}{PARTIAL_SUFFIX}"
    total = 0
    try:
        with partial.open("wb") as handle:
            while True:
                chunk = upload_file.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                total += len(chunk)
                if total > max_bytes:
                    raise ValueError("File exceeds max upload size")
                handle.write(chunk)
    except Exception:
        if partial.exists():
            partial.unlink()
        raise
    for existing in folder.iterdir():
        if existing == partial or existing.name.endswith(PARTIAL_SUFFIX):
            continue
        if existing.is_dir():
            shutil.rmtree(existing)
        else:
            existing.unlink()
    partial.replace(path)
    logger.info("Stored receipt %s (%s bytes)", storage_key, total)
    return storage_key, total


def open_file(storage_key: str):
    path = _resolve_path(storage_key)
    return path.open("rb")


def delete_file(storage_key: str) -> None:
    path = _resolve_path(storage_key)
    if path.exists():
        path.unlink()
