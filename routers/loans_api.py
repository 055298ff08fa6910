from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

import bulk
import crud
import lifecycle
import loan_lines
import signatures
from dependencies import get_actor_id, get_db, get_store
from errors import NotFound
from filter_helpers import blank_to_none, normalize_loan_status
from models import BatchDeleteIn, DeleteResult, Envelope, Loan, LoanIn, LoanLine, LoanLineIn
from signature_store import SignatureStore

router = APIRouter(prefix="/loans", tags=["loans"])


@router.get("", response_model=Envelope[list[Loan]])
def list_loans_api(
    status: Optional[str] = None,
    employee_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    loans = crud.list_loans(
        db,
        status=normalize_loan_status(status),
        employee_id=blank_to_none(employee_id),
    )
    return Envelope(data=loans)


@router.post("", response_model=Envelope[Loan], status_code=201)
def create_loan_api(
    body: LoanIn,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return Envelope(data=lifecycle.create_loan(db, body.employee_id, created_by_id=actor_id))


@router.post("/batch-delete", response_model=Envelope[DeleteResult])
def batch_delete_loans_api(
    body: BatchDeleteIn,
    actor_id: str = Depends(get_actor_id),
    store: SignatureStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    count = bulk.delete_loans(db, body.ids, store=store, actor_id=actor_id)
    return Envelope(data=DeleteResult(count=count))


@router.get("/{loan_id}", response_model=Envelope[Loan])
def get_loan_api(
    loan_id: str,
    db: Session = Depends(get_db),
):
    loan = crud.get_loan(db, loan_id)
    if not loan:
        raise NotFound(f"loan {loan_id} not found")
    return Envelope(data=loan)


@router.delete("/{loan_id}", response_model=Envelope[DeleteResult])
def delete_loan_api(
    loan_id: str,
    actor_id: str = Depends(get_actor_id),
    store: SignatureStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    count = bulk.delete_loan(db, loan_id, store=store, actor_id=actor_id)
    return Envelope(data=DeleteResult(count=count))


@router.post("/{loan_id}/lines", response_model=Envelope[LoanLine], status_code=201)
def add_loan_line_api(
    loan_id: str,
    body: LoanLineIn,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    line = loan_lines.add_line(db, loan_id, body.to_target(), actor_id=actor_id)
    return Envelope(data=line)


@router.delete("/{loan_id}/lines/{line_id}", response_model=Envelope[Loan])
def remove_loan_line_api(
    loan_id: str,
    line_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    loan_lines.remove_line(db, loan_id, line_id, actor_id=actor_id)
    return Envelope(data=crud.get_loan(db, loan_id))


@router.post("/{loan_id}/pickup-signature", response_model=Envelope[Loan])
def upload_pickup_signature_api(
    loan_id: str,
    signature: UploadFile = File(...),
    actor_id: str = Depends(get_actor_id),
    store: SignatureStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    data = signature.file.read()
    loan = signatures.record_pickup_signature(
        db, loan_id, data, signature.content_type, store=store, actor_id=actor_id
    )
    return Envelope(data=loan)


@router.post("/{loan_id}/return-signature", response_model=Envelope[Loan])
def upload_return_signature_api(
    loan_id: str,
    signature: UploadFile = File(...),
    actor_id: str = Depends(get_actor_id),
    store: SignatureStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    data = signature.file.read()
    loan = signatures.record_return_signature(
        db, loan_id, data, signature.content_type, store=store, actor_id=actor_id
    )
    return Envelope(data=loan)


@router.delete("/{loan_id}/pickup-signature", response_model=Envelope[Loan])
def delete_pickup_signature_api(
    loan_id: str,
    actor_id: str = Depends(get_actor_id),
    store: SignatureStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    return Envelope(data=signatures.remove_pickup_signature(db, loan_id, store=store, actor_id=actor_id))


@router.delete("/{loan_id}/return-signature", response_model=Envelope[Loan])
def delete_return_signature_api(
    loan_id: str,
    actor_id: str = Depends(get_actor_id),
    store: SignatureStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    return Envelope(data=signatures.remove_return_signature(db, loan_id, store=store, actor_id=actor_id))


@router.patch("/{loan_id}/close", response_model=Envelope[Loan])
def close_loan_api(
    loan_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return Envelope(data=lifecycle.close_loan(db, loan_id, actor_id=actor_id))
