"""
Attachment uploads shared by finance, forum and SEPBook.

Files are uploaded first (POST /api/uploads) and the returned metadata is then referenced
by the create/update payloads, so a request never carries file bytes and JSON together.
"""
from __future__ import annotations

import hashlib
import logging
import os
import uuid
from datetime import datetime

from werkzeug.utils import secure_filename

from app.djtquest.errors import ValidationError
from app.djtquest.storage import Storage

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 25 * 1024 * 1024

_KIND_BY_EXT = {
    "image": {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".bmp"},
    "video": {".mp4", ".mov", ".webm", ".avi", ".mkv", ".m4v"},
    "audio": {".mp3", ".wav", ".ogg", ".m4a", ".aac", ".webm_audio"},
    "pdf": {".pdf"},
}


def sanitize_upload_filename(filename: str) -> str:
    name = secure_filename(filename or "")
    return name or "upload.bin"


def classify_attachment(filename: str | None, content_type: str | None = None) -> str:
    ext = os.path.splitext((filename or "").lower())[1]
    for kind, exts in _KIND_BY_EXT.items():
        if ext in exts:
            return kind
    ct = (content_type or "").lower()
    for kind in ("image", "video", "audio"):
        if ct.startswith(f"{kind}/"):
            return kind
    if ct == "application/pdf":
        return "pdf"
    return "file"


ATTACHMENT_MODULES = ("finance", "forum", "sepbook")


def upload_key_prefix(module: str, user_id: int) -> str:
    if module not in ATTACHMENT_MODULES:
        raise ValidationError("Módulo de anexo inválido.")
    return f"{module}/{user_id}/"


def _check_upload(data: bytes) -> None:
    if not data:
        raise ValidationError("Arquivo vazio.")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError("Arquivo excede 25MB.")


def store_upload(storage: Storage, *, module: str, user_id: int, filename: str, data: bytes, content_type: str | None) -> dict:
    _check_upload(data)
    safe_name = sanitize_upload_filename(filename)
    day = datetime.utcnow().strftime("%Y%m%d")
    key = f"{upload_key_prefix(module, user_id)}{day}/{uuid.uuid4().hex}_{safe_name}"
    storage.put_bytes(key, data, content_type=content_type)
    return {
        "storage_key": key,
        "filename": safe_name,
        "content_type": content_type,
        "size_bytes": len(data),
        "sha256": hashlib.sha256(data).hexdigest(),
        "kind": classify_attachment(safe_name, content_type),
    }


def store_uploads(storage: Storage, *, module: str, user_id: int, files: list[tuple[str, bytes, str | None]]) -> list[dict]:
    """All or nothing: every file is checked before the first write, and a failed write removes the earlier ones."""
    upload_key_prefix(module, user_id)
    for _name, data, _ct in files:
        _check_upload(data)
    out: list[dict] = []
    try:
        for name, data, ct in files:
            out.append(store_upload(storage, module=module, user_id=user_id, filename=name, data=data, content_type=ct))
    except Exception:
        failed = storage.delete_many([a["storage_key"] for a in out])
        if failed:
            logger.warning("upload rollback left %d storage object(s) behind", len(failed))
        raise
    return out


def normalize_attachment_refs(raw, *, module: str, user_id: int, max_items: int = 12) -> list[dict]:
    """
    Validate attachment metadata sent by the client. Keys must point at the caller's own uploads
    made for this module.
    """
    if raw in (None, ""):
        return []
    if not isinstance(raw, list):
        raise ValidationError("Anexos inválidos.")
    if len(raw) > max_items:
        raise ValidationError(f"Máximo de {max_items} anexos.")
    prefix = upload_key_prefix(module, user_id)
    out: list[dict] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("Anexo inválido.")
        key = str(item.get("storage_key") or "").strip()
        if not key.startswith(prefix) or ".." in key:
            raise ValidationError("Anexo não pertence ao usuário.")
        filename = str(item.get("filename") or "").strip()[:240] or key.rsplit("/", 1)[-1]
        content_type = (str(item.get("content_type") or "").strip()[:120]) or None
        size = item.get("size_bytes")
        out.append(
            {
                "storage_key": key,
                "filename": filename,
                "content_type": content_type,
                "size_bytes": int(size) if isinstance(size, (int, float)) and size >= 0 else None,
                "kind": classify_attachment(filename, content_type),
            }
        )
    return out
