"""Unit tests for the document verification gate."""

from datetime import timedelta

from transferhub.domain.entities import Document
from transferhub.domain.enums import DocType, DocumentState
from transferhub.domain.verification import document_state, is_ready, live_documents
from tests.conftest import NOW


def _doc(doc_type, *, expiry=None, uploaded=NOW, verified=False, location="a.pdf"):
    return Document(
        driver_id=1,
        doc_type=doc_type,
        storage_location=location,
        expiry_date=expiry,
        uploaded_at=uploaded,
        verified=verified,
    )


def _full_set(**overrides):
    return [
        _doc(DocType.LICENSE, **overrides),
        _doc(DocType.INSURANCE, **overrides),
        _doc(DocType.REGISTRATION, **overrides),
    ]


class TestReadiness:
    def test_full_set_without_expiry_is_ready(self):
        result = is_ready(_full_set(), NOW)
        assert result.ready
        assert result.missing == []

    def test_empty_set_reports_every_required_type(self):
        result = is_ready([], NOW)
        assert not result.ready
        assert result.missing == [DocType.LICENSE, DocType.INSURANCE, DocType.REGISTRATION]

    def test_other_documents_do_not_count(self):
        docs = [_doc(DocType.LICENSE), _doc(DocType.OTHER), _doc(DocType.INSURANCE)]
        assert is_ready(docs, NOW).missing == [DocType.REGISTRATION]

    def test_expired_document_is_missing(self):
        docs = _full_set(expiry=NOW + timedelta(days=30))
        docs[1] = _doc(DocType.INSURANCE, expiry=NOW - timedelta(days=1))
        assert is_ready(docs, NOW).missing == [DocType.INSURANCE]

    def test_expiry_exactly_now_counts_as_expired(self):
        docs = _full_set()
        docs[0] = _doc(DocType.LICENSE, expiry=NOW)
        assert is_ready(docs, NOW).missing == [DocType.LICENSE]

    def test_result_depends_on_evaluation_time(self):
        docs = _full_set(expiry=NOW + timedelta(days=10))
        assert is_ready(docs, NOW).ready
        assert not is_ready(docs, NOW + timedelta(days=11)).ready

    def test_latest_upload_is_the_live_document(self):
        old = _doc(DocType.LICENSE, expiry=NOW - timedelta(days=1), uploaded=NOW - timedelta(days=40))
        new = _doc(DocType.LICENSE, uploaded=NOW, location="new.pdf")
        assert live_documents([old, new])[DocType.LICENSE].storage_location == "new.pdf"
        assert live_documents([new, old])[DocType.LICENSE].storage_location == "new.pdf"
        docs = [old, new, _doc(DocType.INSURANCE), _doc(DocType.REGISTRATION)]
        assert is_ready(docs, NOW).ready


class TestDocumentState:
    def test_unverified_is_pending_verification(self):
        assert document_state(_doc(DocType.LICENSE), NOW) == DocumentState.PENDING_VERIFICATION

    def test_verified_without_expiry_is_valid(self):
        assert document_state(_doc(DocType.LICENSE, verified=True), NOW) == DocumentState.VALID

    def test_expiring_soon_inside_threshold(self):
        doc = _doc(DocType.LICENSE, verified=True, expiry=NOW + timedelta(days=29))
        assert document_state(doc, NOW) == DocumentState.EXPIRING_SOON

    def test_valid_beyond_threshold(self):
        doc = _doc(DocType.LICENSE, verified=True, expiry=NOW + timedelta(days=31))
        assert document_state(doc, NOW) == DocumentState.VALID

    def test_expired(self):
        doc = _doc(DocType.LICENSE, verified=True, expiry=NOW - timedelta(seconds=1))
        assert document_state(doc, NOW) == DocumentState.EXPIRED

    def test_threshold_is_configurable(self):
        doc = _doc(DocType.LICENSE, verified=True, expiry=NOW + timedelta(days=10))
        assert document_state(doc, NOW, expiring_soon_days=7) == DocumentState.VALID
