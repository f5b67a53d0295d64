"""Admin endpoints for the doctor verification workflow."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.constants import VerificationStatus
from app.core.database import get_db
from app.dependencies.auth import get_current_admin
from app.dependencies.rate_limit import rate_limit
from app.schemas.verification import (
    AdminDecision,
    AdminReject,
    AdminRequestDocuments,
    AdminSuspend,
    AppealDecision,
    DocumentRead,
    DocumentReview,
    VerificationRead,
    VerificationSummary,
)
from app.services.risk_assessment_service import RiskAssessmentService
from app.services.verification_service import VerificationService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/verifications/pending", response_model=list[VerificationSummary])
async def pending_verifications(
    status: Optional[VerificationStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit),
):
    return VerificationService.list_pending(db, status=status, limit=limit, offset=offset)


@router.get("/verifications/high-risk", response_model=list[VerificationSummary])
async def high_risk_verifications(
    limit: int = Query(50, ge=1, le=200),
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.list_high_risk(db, limit=limit)


@router.get("/verifications/stats")
async def verification_stats(
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.stats(db)


@router.get("/verifications/{record_id}", response_model=VerificationRead)
async def get_verification(
    record_id: int,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.get(db, record_id)


@router.post("/verifications/{record_id}/approve", response_model=VerificationRead)
async def approve(
    record_id: int,
    payload: Optional[AdminDecision] = None,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.admin_approve(db, record_id, current_admin["user_id"], payload.notes if payload else None)


@router.post("/verifications/{record_id}/reject", response_model=VerificationRead)
async def reject(
    record_id: int,
    payload: AdminReject,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.admin_reject(
        db, record_id, current_admin["user_id"], payload.reason, payload.notes
    )


@router.post("/verifications/{record_id}/hold", response_model=VerificationRead)
async def hold(
    record_id: int,
    payload: Optional[AdminDecision] = None,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.admin_hold(db, record_id, current_admin["user_id"], payload.notes if payload else None)


@router.post("/verifications/{record_id}/request-documents", response_model=VerificationRead)
async def request_documents(
    record_id: int,
    payload: AdminRequestDocuments,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.admin_request_documents(
        db, record_id, current_admin["user_id"], payload.documents, payload.notes
    )


@router.post("/verifications/{record_id}/suspend", response_model=VerificationRead)
async def suspend(
    record_id: int,
    payload: AdminSuspend,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.admin_suspend(db, record_id, current_admin["user_id"], payload.reason)


@router.post("/verifications/{record_id}/appeal-decision", response_model=VerificationRead)
async def appeal_decision(
    record_id: int,
    payload: AppealDecision,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.admin_decide_appeal(
        db, record_id, current_admin["user_id"], payload.accept, payload.notes
    )


@router.post("/verifications/{record_id}/resync-license", response_model=VerificationRead)
async def resync_license(
    record_id: int,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.resync_license(db, record_id, actor=current_admin["user_id"])


@router.post(
    "/verifications/{record_id}/documents/{document_id}/review",
    response_model=DocumentRead,
)
async def review_document(
    record_id: int,
    document_id: int,
    payload: DocumentReview,
    current_admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return VerificationService.review_document(
        db, record_id, document_id, current_admin["user_id"], payload.verified, payload.notes
    )


@router.get("/risk/stats")
async def risk_stats(current_admin = Depends(get_current_admin)):
    return RiskAssessmentService.risk_stats()
