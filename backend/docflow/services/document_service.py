# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from .concurrency import RetryableConflict


DOC_TYPE_QUOTATION = "QUOTATION"
DOC_TYPE_INVOICE = "INVOICE"
DOC_TYPE_WORK_ORDER = "WORK_ORDER"

DOCUMENT_PREFIXES = {
    DOC_TYPE_QUOTATION: "Q",
    DOC_TYPE_INVOICE: "INV",
    DOC_TYPE_WORK_ORDER: "WO",
}


def next_document_number(*, org_id: int, document_type: str, pad: int = 4) -> str:
    """
    Allocate the next document number for an organization/type.

    Runs inside the caller's transaction so the number is only consumed if
    the document itself commits. Must be called from a run_with_retry
    operation: a lost race on the first sequence row raises
    RetryableConflict and the whole operation starts over.
    """
    if not org_id:
        raise ValidationError("org_id is required")
    prefix = DOCUMENT_PREFIXES.get(document_type)
    if prefix is None:
        raise ValidationError(f"Unknown document type: {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(org_id=org_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(org_id=org_id, document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise RetryableConflict(f"sequence {document_type} created concurrently") from exc
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
