"""
Student Routes - Identity Approval

Routes:
- POST /students/me            - Register or resubmit own profile (student)
- GET  /students/me            - Own profile (student)
- GET  /students               - List students (admin)
- GET  /students/stats         - Counts by approval status (admin)
- GET  /students/{id}          - Student detail (admin)
- POST /students/{id}/approve  - Approve (admin)
- POST /students/{id}/reject   - Reject (admin)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.bidding import ApprovalStatus, BiddingService, Principal, paginate
from web.auth import get_service, require_admin, require_student


router = APIRouter(prefix="/students", tags=["students"])


class StudentProfileRequest(BaseModel):
    email: str
    name: str = ""
    student_id_url: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/me")
def register_profile(
    body: StudentProfileRequest,
    principal: Principal = Depends(require_student),
    service: BiddingService = Depends(get_service),
):
    try:
        profile = service.register_student(
            principal,
            email=body.email,
            name=body.name,
            student_id_url=body.student_id_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JSONResponse(profile.to_dict())


@router.get("/me")
def my_profile(
    principal: Principal = Depends(require_student),
    service: BiddingService = Depends(get_service),
):
    return JSONResponse(service.get_student(principal.principal_id).to_dict())


@router.get("")
def list_students(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    try:
        status_filter = ApprovalStatus(status.upper()) if status else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown approval status: {status}")
    students = service.list_students(status_filter)
    return JSONResponse(paginate(students, page, limit).to_dict(lambda s: s.to_dict()))


@router.get("/stats")
def student_stats(
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    return JSONResponse(service.student_stats())


@router.get("/{student_id}")
def get_student(
    student_id: str,
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    return JSONResponse(service.get_student(student_id).to_dict())


@router.post("/{student_id}/approve")
def approve_student(
    student_id: str,
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    return JSONResponse(service.approve_student(student_id).to_dict())


@router.post("/{student_id}/reject")
def reject_student(
    student_id: str,
    body: Optional[RejectRequest] = None,
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    reason = body.reason if body else None
    return JSONResponse(service.reject_student(student_id, reason).to_dict())
