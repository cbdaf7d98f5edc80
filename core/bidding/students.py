"""
Student Approval - Identity Review Before a Student May Bid

Students upload an ID document (stored elsewhere; only its URL is kept) and
wait for an admin to approve or reject them. A rejected student may resubmit,
which puts the profile back in the review queue.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.bidding.schema import ApprovalStatus, StudentProfile, utcnow


logger = logging.getLogger(__name__)


def register_student(
    existing: Optional[StudentProfile],
    student_id: str,
    email: str,
    name: str = "",
    student_id_url: Optional[str] = None,
) -> StudentProfile:
    """
    Create or update a student's own profile.

    Resubmitting after a rejection returns the profile to PENDING. An approved
    profile stays approved.

    Raises:
        ValueError: If the email is missing or malformed
    """
    if existing is None:
        profile = StudentProfile(
            student_id=student_id,
            email=email.strip(),
            name=name.strip(),
            student_id_url=student_id_url,
        )
        logger.info("Student profile %s registered", student_id)
        return profile

    if not email or "@" not in email:
        raise ValueError("A valid email is required")
    existing.email = email.strip()
    existing.name = name.strip() or existing.name
    if student_id_url:
        existing.student_id_url = student_id_url
    if existing.approval_status == ApprovalStatus.REJECTED:
        existing.approval_status = ApprovalStatus.PENDING
        existing.rejection_reason = None
        logger.info("Student profile %s resubmitted for review", student_id)
    existing.updated_at = utcnow()
    return existing


def approve_student(profile: StudentProfile) -> StudentProfile:
    """Mark a student APPROVED. Approving twice is a no-op."""
    if profile.approval_status != ApprovalStatus.APPROVED:
        profile.approval_status = ApprovalStatus.APPROVED
        profile.rejection_reason = None
        profile.updated_at = utcnow()
        logger.info("Student %s approved", profile.student_id)
    return profile


def reject_student(profile: StudentProfile, reason: Optional[str] = None) -> StudentProfile:
    """Mark a student REJECTED with an optional reason. Also revokes an approval."""
    profile.approval_status = ApprovalStatus.REJECTED
    profile.rejection_reason = (reason or "").strip() or None
    profile.updated_at = utcnow()
    logger.info("Student %s rejected", profile.student_id)
    return profile
