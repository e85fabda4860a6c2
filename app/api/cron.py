"""
Scheduler triggers for the workflow drivers.

Each endpoint runs one driver to completion and returns its run summary.
Triggers may overlap or be retried; the drivers stay correct either way.
"""
from fastapi import APIRouter, Depends

from app.core.dependencies import (
    WorkflowContainer,
    get_catchup_driver,
    get_container,
    get_followup_driver,
    get_progression_driver,
    verify_cron_secret,
)
from app.core.exceptions import DriverDisabledError, InternalServerError
from app.core.logging import get_logger
from app.schemas.runs import RunSummary
from app.services.base_driver import BaseDriver
from app.services.catchup_driver import CatchUpDriver
from app.services.followup_driver import FollowUpDriver
from app.services.progression_driver import ProgressionDriver

router = APIRouter(dependencies=[Depends(verify_cron_secret)])
logger = get_logger(__name__)


async def _run(driver: BaseDriver) -> RunSummary:
    try:
        return await driver.run()
    except Exception as e:
        logger.error("Driver run aborted", driver=driver.name, error=str(e), exc_info=True)
        raise InternalServerError(f"{driver.name} run failed")


@router.api_route("/send-reminders", methods=["GET", "POST"], response_model=RunSummary)
async def send_reminders(driver: ProgressionDriver = Depends(get_progression_driver)):
    """Daily reminder run: J30, J15 and J7 templates, J3 call flags."""
    return await _run(driver)


@router.api_route("/send-followups", methods=["GET", "POST"], response_model=RunSummary)
async def send_followups(driver: FollowUpDriver = Depends(get_followup_driver)):
    """Hourly follow-up run; does nothing outside business hours."""
    return await _run(driver)


@router.api_route("/catch-up-reminders", methods=["GET", "POST"], response_model=RunSummary)
async def catch_up_reminders(
    driver: CatchUpDriver = Depends(get_catchup_driver),
    container: WorkflowContainer = Depends(get_container),
):
    """
    One-shot backfill of cases that fell behind.

    Disabled unless CATCH_UP_ENABLED is set.
    """
    if not container.settings.catch_up_enabled:
        logger.warning("Catch-up trigger called while disabled")
        raise DriverDisabledError(driver.name)
    return await _run(driver)
