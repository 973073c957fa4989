# learnhub/api/routers/analytics.py - Financial reporting
from fastapi import APIRouter, Depends
from typing import Dict, Any
from uuid import UUID

from learnhub.api.deps.auth import get_current_user, require_admin, ensure_self_or_admin
from learnhub.api.deps.services import get_analytics_service
from learnhub.schemas.analytics import StudentFinancialSummary, CourseEMIAnalytics
from learnhub.services.financial_analytics import FinancialAnalyticsService

router = APIRouter()


@router.get("/students/{student_id}/financial-summary", response_model=StudentFinancialSummary)
async def get_student_financial_summary(
    student_id: UUID,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: FinancialAnalyticsService = Depends(get_analytics_service),
):
    """Totals, payment consistency and overdue risk for a learner"""
    ensure_self_or_admin(ctx, student_id)
    return service.student_financial_summary(student_id)


@router.get("/courses/{course_id}/emi", response_model=CourseEMIAnalytics)
async def get_course_emi_analytics(
    course_id: UUID,
    ctx: Dict[str, Any] = Depends(require_admin),
    service: FinancialAnalyticsService = Depends(get_analytics_service),
):
    """Installment collection figures for a course"""
    return service.course_emi_analytics(course_id)
