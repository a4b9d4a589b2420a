"""
Verification Gate
=================

Pure function of a driver's document set and an evaluation instant:

    is_ready(documents, now) -> Readiness(ready, missing)

* Required types are fixed: license, insurance, registration.
  ``other`` never counts toward readiness.
* A document counts only if its expiry (when present) is strictly in the
  future at ``now``; an expired required document is reported missing.
* When several rows of one type are supplied, the most recently uploaded
  one is the live document.

No I/O, no clock reads: the result is deterministic in (documents, now).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from .clock import as_utc
from .entities import Document
from .enums import REQUIRED_DOC_TYPES, DocType, DocumentState

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Readiness:
    ready: bool
    missing: list[DocType] = field(default_factory=list)


def live_documents(documents: Iterable[Document]) -> dict[DocType, Document]:
    """Latest upload per document type."""
    live: dict[DocType, Document] = {}
    for doc in documents:
        current = live.get(doc.doc_type)
        if current is None or _uploaded(doc) >= _uploaded(current):
            live[doc.doc_type] = doc
    return live


def is_ready(documents: Iterable[Document], now: datetime) -> Readiness:
    live = live_documents(documents)
    missing = [
        doc_type
        for doc_type in REQUIRED_DOC_TYPES
        if doc_type not in live or live[doc_type].is_expired(now)
    ]
    return Readiness(ready=not missing, missing=missing)


def document_state(
    document: Document, now: datetime, expiring_soon_days: int = 30
) -> DocumentState:
    """Display state shown to partners and reviewers."""
    if not document.verified:
        return DocumentState.PENDING_VERIFICATION
    expiry = as_utc(document.expiry_date)
    if expiry is not None:
        if expiry <= now:
            return DocumentState.EXPIRED
        if expiry < now + timedelta(days=expiring_soon_days):
            return DocumentState.EXPIRING_SOON
    return DocumentState.VALID


def _uploaded(doc: Document) -> datetime:
    return as_utc(doc.uploaded_at) or _EPOCH
