"""
Scheduler trigger endpoints.
Endpoint: /api/v1/cron/subscriptions/...

Every endpoint accepts GET and POST (external cron services differ in
which one they send) and requires the CRON_SECRET bearer token.
"""

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from loguru import logger

from core.dependencies import get_billing_controller, verify_cron_secret
from core.exceptions import QueryError
from schemas.billing import CronResponse, CycleSummary
from services.billing_cycle import BillingCycleController

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


async def _run(job, message: str):
    try:
        summary: CycleSummary = await run_in_threadpool(job)
    except QueryError as e:
        logger.error(f"Billing job aborted: {e}")
        results = e.summary if e.summary is not None else CycleSummary(errors=[str(e)])
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Failed to query subscriptions",
                "results": results.model_dump(),
            },
        )
    return CronResponse(success=not summary.has_errors, message=message, results=summary)


@router.api_route("", methods=["GET", "POST"], response_model=CronResponse)
async def run_billing_cycle(
    controller: BillingCycleController = Depends(get_billing_controller),
):
    """Renewals, lock sweep and trial reminders in one invocation."""
    return await _run(controller.run_billing_cycle, "All subscription jobs executed")


@router.api_route("/auto-renew", methods=["GET", "POST"], response_model=CronResponse)
async def run_auto_renew(
    controller: BillingCycleController = Depends(get_billing_controller),
):
    """Renew active subscriptions whose period ends now."""
    return await _run(controller.run_auto_renew, "Auto renew job completed")


@router.api_route("/lock-expired", methods=["GET", "POST"], response_model=CronResponse)
async def run_lock_expired(
    controller: BillingCycleController = Depends(get_billing_controller),
):
    """Lock expired trials, ended cancellations and overdue accounts."""
    return await _run(controller.run_lock_expired, "Lock expired accounts job completed")


@router.api_route("/trial-reminder", methods=["GET", "POST"], response_model=CronResponse)
async def run_trial_reminder(
    controller: BillingCycleController = Depends(get_billing_controller),
):
    """Remind owners whose trial ends in 7, 3 or 1 days."""
    return await _run(controller.run_trial_reminder, "Trial reminder job completed")
