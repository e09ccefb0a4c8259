"""
Client Engagement Portal
Bulk Delivery Upload — match a batch of finished files to clients by name.

File names are expected to look like ``<Client Name>_<Document>.pdf`` or
``<Client Name> - <Document>.docx``. The client part is matched against
every client in three passes:

  1. exact match on the normalised name (lowercase, ``[a-z0-9]`` only)
  2. either name contained in the other
  3. the client's first name

Each matched file goes through ``delivery_lifecycle.submit_for_review`` in
its own commit, so one bad file never blocks the rest of the batch.
"""

from __future__ import annotations

import logging
import re

from portal.core.exceptions import PortalError, ValidationError
from portal.models import db
from portal.models.client import Client
from portal.services import delivery_lifecycle

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"\.[^.]+$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

# Tried in order; the first one present in the stem wins.
NAME_SEPARATORS = ("_", " - ", "-")


def strip_extension(file_name: str) -> str:
    return _EXTENSION_RE.sub("", file_name)


def normalize_name(name: str) -> str:
    return _NON_ALNUM_RE.sub("", (name or "").lower())


def extract_client_name(file_name: str) -> str | None:
    """Return the client part of ``file_name``, or None without a separator."""
    stem = strip_extension(file_name)
    for sep in NAME_SEPARATORS:
        if sep in stem:
            return stem.split(sep)[0].strip() or None
    return None


def detect_document_type(file_name: str) -> str:
    lower = file_name.lower()
    if "resume" in lower or "cv" in lower:
        return "resume"
    if ("cover" in lower and "letter" in lower) or "coverletter" in lower:
        return "cover_letter"
    if "thank" in lower and "you" in lower:
        return "thank_you_letter"
    if "linkedin" in lower:
        return "linkedin_profile"
    if "bio" in lower:
        return "bio"
    if "outreach" in lower:
        return "outreach_letter"
    return "resume"


def match_client(extracted_name: str | None, clients: list[Client]) -> Client | None:
    """Pick the client a file belongs to; first hit in list order wins."""
    search = normalize_name(extracted_name)
    if not search:
        return None

    normalized = [(c, normalize_name(c.name)) for c in clients]
    normalized = [(c, n) for c, n in normalized if n]

    for client, name in normalized:
        if name == search:
            return client
    for client, name in normalized:
        if search in name or name in search:
            return client
    for client, _ in normalized:
        first = normalize_name(client.name.split(" ")[0])
        if first and (first == search or first in search):
            return client
    return None


def _validate_files(files) -> None:
    if not isinstance(files, list) or not files:
        raise ValidationError("files must be a non-empty list", details={"files": "required"})
    errors = {}
    for i, f in enumerate(files):
        if not isinstance(f, dict):
            errors[f"files[{i}]"] = "must be an object"
            continue
        if not isinstance(f.get("file_name"), str) or not f["file_name"].strip():
            errors[f"files[{i}].file_name"] = "required"
        if not isinstance(f.get("file_ref"), str) or not f["file_ref"].strip():
            errors[f"files[{i}].file_ref"] = "required"
    if errors:
        raise ValidationError("Invalid bulk delivery", details=errors)


def bulk_submit(files: list, *, dry_run: bool = False, actor: str | None = None) -> dict:
    """Match every file to a client and deliver the matched ones.

    Args:
        files: ``[{file_name, file_ref, file_size?, mime_type?}]``.
        dry_run: Only report the matches; nothing is written.

    Returns:
        {"matched": int, "unmatched": int, "failed": int, "results": [...]}
        where each result has ``status`` one of submitted | matched |
        unmatched | error.
    """
    _validate_files(files)
    clients = Client.query.order_by(Client.created_at).all()

    results = []
    for f in files:
        file_name = f["file_name"].strip()
        extracted = extract_client_name(file_name)
        client = match_client(extracted, clients)
        result = {
            "file_name": file_name,
            "extracted_name": extracted,
            "document_type": detect_document_type(file_name),
            "client_id": client.id if client else None,
            "client_name": client.name if client else None,
        }
        if client is None:
            result["status"] = "unmatched"
        elif dry_run:
            result["status"] = "matched"
        else:
            try:
                submitted = delivery_lifecycle.submit_for_review(
                    client.id,
                    document_title=strip_extension(file_name),
                    file_ref=f["file_ref"],
                    document_type=result["document_type"],
                    file_size=f.get("file_size"),
                    mime_type=f.get("mime_type"),
                    actor=actor,
                )
            except PortalError as exc:
                db.session.rollback()
                logger.warning("Bulk delivery of '%s' failed: %s", file_name, exc,
                               extra={"client_id": client.id})
                result.update(status="error", error=str(exc))
            else:
                result.update(status="submitted",
                              delivery_id=submitted["delivery"]["id"],
                              warnings=submitted["warnings"])
        results.append(result)

    unmatched = sum(1 for r in results if r["status"] == "unmatched")
    failed = sum(1 for r in results if r["status"] == "error")
    matched = len(results) - unmatched - failed
    logger.info("Bulk delivery%s: %d matched, %d unmatched, %d failed",
                " (dry run)" if dry_run else "", matched, unmatched, failed)
    return {"matched": matched, "unmatched": unmatched, "failed": failed, "results": results}
