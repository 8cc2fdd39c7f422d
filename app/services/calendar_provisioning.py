"""
Practitioner calendar provisioning

Creates (or reconciles) a dedicated provider calendar per practitioner, shares it
with the practitioner, records it on their profile and hands it to the channel
manager. Every step is retried for transient errors; a failure after resources
were created rolls them back concurrently and reports what could not be undone.

Batch runs provision many practitioners with bounded concurrency, staggered
starts and a minimum spacing between operations to stay under provider quotas.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app import config
from app.calendar.base import CalendarProviderClient
from app.exceptions import PractitionerNotFoundError
from app.models.calendar import PRACTITIONER_ROLES, Calendar, IntegrationStatus, Practitioner
from app.resilience import Sleep, is_retryable_error, retry_async
from app.services.calendar_channel_manager import CalendarChannelManager
from app.services.email_service import EmailService
from app.storage.base import CalendarStore, PractitionerStore
from app.utils.logging_config import mask_email, redact_emails
from app.utils.timezone_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


class ProvisioningStep(str, Enum):
    VALIDATION = "validation"
    EXISTENCE_CHECK = "existence_check"
    ALREADY_EXISTS = "already_exists"
    RECONCILED = "reconciled"
    CALENDAR_CREATION = "calendar_creation"
    PROFILE_UPDATE = "profile_update"
    EMAIL_NOTIFICATION = "email_notification"
    COMPLETED = "completed"


ROLLBACK_STEPS = (ProvisioningStep.CALENDAR_CREATION, ProvisioningStep.PROFILE_UPDATE)


@dataclass
class ProvisioningPlan:
    """Resources touched by one provisioning run, used to decide what rollback undoes"""
    practitioner_id: str
    step: ProvisioningStep = ProvisioningStep.VALIDATION
    calendar: Optional[Calendar] = None
    created_provider_calendar_id: Optional[str] = None
    created_calendar_row: bool = False
    reconciled: bool = False


@dataclass
class ProvisioningResult:
    success: bool
    step: ProvisioningStep
    practitioner_id: str
    calendar_id: Optional[str] = None
    provider_calendar_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
    rolled_back: bool = False
    rollback_errors: List[str] = field(default_factory=list)

    @property
    def rollback_required(self) -> bool:
        return not self.success and self.step in ROLLBACK_STEPS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "setupStep": self.step.value,
            "practitionerId": self.practitioner_id,
            "calendarId": self.calendar_id,
            "providerCalendarId": self.provider_calendar_id,
            "error": self.error,
            "retryable": self.retryable,
            "rollbackRequired": self.rollback_required,
            "rolledBack": self.rolled_back,
            "rollbackErrors": list(self.rollback_errors),
        }


@dataclass
class PractitionerOutcome:
    practitioner_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    success: bool = False
    skipped: bool = False
    error: Optional[str] = None
    calendar_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practitionerId": self.practitioner_id,
            "name": self.name,
            "email": mask_email(self.email) if self.email else None,
            "success": self.success,
            "skipped": self.skipped,
            "error": self.error,
            "calendarId": self.calendar_id,
        }


@dataclass
class BatchProvisioningResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[PractitionerOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTherapists": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "durationSeconds": round(self.duration_seconds, 2),
            "results": [r.to_dict() for r in self.results],
            "error": self.error,
        }


@dataclass
class CalendarSetupStatus:
    practitioner_id: str
    calendar_exists: bool = False
    permissions_configured: bool = False
    integration_status: str = IntegrationStatus.PENDING.value
    share_permissions: List[Dict[str, Any]] = field(default_factory=list)
    last_setup_attempt: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practitionerId": self.practitioner_id,
            "calendarExists": self.calendar_exists,
            "permissionsConfigured": self.permissions_configured,
            "integrationStatus": self.integration_status,
            "sharePermissions": self.share_permissions,
            "lastSetupAttempt": to_iso(self.last_setup_attempt),
        }


class CalendarProvisioningWorkflow:
    """Provisioning state machine for practitioner calendars"""

    def __init__(
        self,
        provider: CalendarProviderClient,
        calendar_store: CalendarStore,
        practitioner_store: PractitionerStore,
        *,
        email_service: Optional[EmailService] = None,
        channel_manager: Optional[CalendarChannelManager] = None,
        on_calendar_removed: Optional[Callable[[str], None]] = None,
        max_attempts: int = config.PROVISIONING_MAX_ATTEMPTS,
        retry_delay: float = config.PROVISIONING_RETRY_DELAY_SECONDS,
        concurrency_limit: int = config.PROVISIONING_CONCURRENCY,
        batch_stagger_seconds: float = config.PROVISIONING_BATCH_STAGGER_SECONDS,
        operation_spacing_seconds: float = config.PROVISIONING_OPERATION_SPACING_SECONDS,
        time_zone: str = config.CALENDAR_TIMEZONE,
        owner_account_email: Optional[str] = config.GOOGLE_SERVICE_ACCOUNT_SUBJECT,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider
        self.calendars = calendar_store
        self.practitioners = practitioner_store
        self.email_service = email_service
        self.channel_manager = channel_manager
        self.on_calendar_removed = on_calendar_removed
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.concurrency_limit = concurrency_limit
        self.batch_stagger_seconds = batch_stagger_seconds
        self.operation_spacing_seconds = operation_spacing_seconds
        self.time_zone = time_zone
        self.owner_account_email = owner_account_email
        self._sleep = sleep
        self._clock = clock

    async def _with_retry(self, step: str, practitioner_id: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        return await retry_async(
            operation,
            step=step,
            max_attempts=self.max_attempts,
            base_delay=self.retry_delay,
            sleep=self._sleep,
            context=practitioner_id,
        )

    async def _validate(self, practitioner_id: str, practitioner_email: Optional[str]) -> Practitioner:
        practitioner = await self._with_retry(
            "Practitioner lookup", practitioner_id, lambda: self.practitioners.get(practitioner_id)
        )
        if practitioner is None:
            raise PractitionerNotFoundError(practitioner_id)
        if practitioner.role not in PRACTITIONER_ROLES:
            raise PractitionerNotFoundError(practitioner_id, f"User {practitioner_id} is not a practitioner")
        if not practitioner.is_active:
            raise PractitionerNotFoundError(practitioner_id, f"Practitioner {practitioner_id} is not active")

        email = practitioner_email or practitioner.email
        if not email or "@" not in email:
            raise PractitionerNotFoundError(practitioner_id, f"Practitioner {practitioner_id} has no valid email")
        practitioner.email = email
        return practitioner

    async def provision(self, practitioner_id: str, practitioner_email: Optional[str] = None) -> ProvisioningResult:
        """
        Provision (or reconcile) the practitioner's calendar.

        Idempotent: an already-active calendar returns success at step already_exists.
        """
        plan = ProvisioningPlan(practitioner_id=practitioner_id)

        try:
            practitioner = await self._validate(practitioner_id, practitioner_email)

            plan.step = ProvisioningStep.EXISTENCE_CHECK
            existing = await self._with_retry(
                "Calendar existence check", practitioner_id,
                lambda: self.calendars.get_by_practitioner(practitioner_id)
            )

            if existing is not None and existing.is_active:
                logger.info(f"Active calendar already exists for practitioner {practitioner_id}")
                return ProvisioningResult(
                    success=True,
                    step=ProvisioningStep.ALREADY_EXISTS,
                    practitioner_id=practitioner_id,
                    calendar_id=existing.id,
                    provider_calendar_id=existing.provider_calendar_id,
                )

            plan.step = ProvisioningStep.CALENDAR_CREATION
            if existing is not None:
                plan.calendar = await self._reconcile(existing, practitioner, plan)
            else:
                plan.calendar = await self._create_calendar(practitioner, plan)

            plan.step = ProvisioningStep.PROFILE_UPDATE
            await self._with_retry(
                "Profile update", practitioner_id,
                lambda: self.practitioners.update_calendar_reference(practitioner_id, plan.calendar.id, True)
            )

        except Exception as e:
            return await self._fail(plan, e)

        await self._hand_off_channel(plan.calendar)

        plan.step = ProvisioningStep.EMAIL_NOTIFICATION
        await self._notify_practitioner(practitioner)

        logger.info(f"Calendar setup completed for practitioner {practitioner_id}")
        return ProvisioningResult(
            success=True,
            step=ProvisioningStep.RECONCILED if plan.reconciled else ProvisioningStep.COMPLETED,
            practitioner_id=practitioner_id,
            calendar_id=plan.calendar.id,
            provider_calendar_id=plan.calendar.provider_calendar_id,
        )

    async def _create_provider_calendar(self, practitioner: Practitioner, plan: ProvisioningPlan) -> str:
        provider_calendar_id = await self._with_retry(
            "Calendar creation", practitioner.id,
            lambda: self.provider.create_calendar(
                summary=f"{practitioner.display_name} - Practice Calendar",
                description=f"Appointments for {practitioner.display_name}",
                time_zone=self.time_zone,
            )
        )
        plan.created_provider_calendar_id = provider_calendar_id

        await self._with_retry(
            "Calendar sharing", practitioner.id,
            lambda: self.provider.ensure_acl(provider_calendar_id, practitioner.email, "writer")
        )
        return provider_calendar_id

    async def _create_calendar(self, practitioner: Practitioner, plan: ProvisioningPlan) -> Calendar:
        provider_calendar_id = await self._create_provider_calendar(practitioner, plan)

        calendar = Calendar(
            id=str(uuid.uuid4()),
            practitioner_id=practitioner.id,
            provider_calendar_id=provider_calendar_id,
            integration_status=IntegrationStatus.ACTIVE,
            shared_email=practitioner.email,
            acl_role="writer",
            owner_account_email=self.owner_account_email,
        )
        created = await self._with_retry(
            "Calendar record", practitioner.id, lambda: self.calendars.create(calendar)
        )
        plan.created_calendar_row = True
        logger.info(f"Created calendar {created.id} for practitioner {practitioner.id}")
        return created

    async def _reconcile(self, existing: Calendar, practitioner: Practitioner, plan: ProvisioningPlan) -> Calendar:
        """
        Bring a pending/error calendar row back to active.

        Reuses the provider calendar when it still exists; otherwise creates a
        replacement and points the existing row at it.
        """
        logger.info(f"Reconciling {existing.integration_status.value} calendar {existing.id}")

        still_exists = False
        if existing.provider_calendar_id:
            still_exists = await self._with_retry(
                "Calendar verification", practitioner.id,
                lambda: self.provider.calendar_exists(existing.provider_calendar_id)
            )

        fields: Dict[str, Any] = {"integration_status": IntegrationStatus.ACTIVE.value}
        if still_exists:
            await self._with_retry(
                "Calendar sharing", practitioner.id,
                lambda: self.provider.ensure_acl(existing.provider_calendar_id, practitioner.email, "writer")
            )
        else:
            existing.provider_calendar_id = await self._create_provider_calendar(practitioner, plan)
            existing.sync_token = None
            fields.update({"provider_calendar_id": existing.provider_calendar_id, "sync_token": None})

        fields["shared_email"] = practitioner.email
        await self._with_retry(
            "Calendar record", practitioner.id, lambda: self.calendars.update(existing.id, fields)
        )
        existing.integration_status = IntegrationStatus.ACTIVE
        existing.shared_email = practitioner.email
        plan.reconciled = True
        return existing

    async def _fail(self, plan: ProvisioningPlan, error: Exception) -> ProvisioningResult:
        message = redact_emails(str(error)) or type(error).__name__
        result = ProvisioningResult(
            success=False,
            step=plan.step,
            practitioner_id=plan.practitioner_id,
            calendar_id=plan.calendar.id if plan.calendar else None,
            provider_calendar_id=plan.created_provider_calendar_id,
            error=message,
            retryable=is_retryable_error(error),
        )
        logger.error(
            f"Calendar setup failed for practitioner {plan.practitioner_id} at step {plan.step.value}: {message}"
        )

        if result.rollback_required:
            result.rollback_errors = await self.rollback(plan)
            result.rolled_back = True

        await self._notify_admin_failure(result)
        return result

    async def rollback(self, plan: ProvisioningPlan) -> List[str]:
        """
        Undo what this run created, all compensations concurrently.

        Returns the compensations that failed; one failing never stops the others.
        """
        compensations: List[Awaitable[Any]] = []
        labels: List[str] = []

        if plan.created_provider_calendar_id:
            compensations.append(self.provider.delete_calendar(plan.created_provider_calendar_id))
            labels.append("delete provider calendar")

        if plan.calendar is not None:
            if plan.created_calendar_row:
                compensations.append(self.calendars.delete(plan.calendar.id))
                labels.append("delete calendar record")
            else:
                compensations.append(self.calendars.update(
                    plan.calendar.id, {"integration_status": IntegrationStatus.ERROR.value}
                ))
                labels.append("mark calendar error")

        compensations.append(self.practitioners.update_calendar_reference(plan.practitioner_id, None, False))
        labels.append("clear profile reference")

        outcomes = await asyncio.gather(*compensations, return_exceptions=True)

        failures = []
        for label, outcome in zip(labels, outcomes):
            if isinstance(outcome, Exception):
                failures.append(f"{label}: {redact_emails(str(outcome))}")
                logger.error(f"Rollback step '{label}' failed for practitioner {plan.practitioner_id}: {outcome}")

        if plan.calendar is not None:
            self._forget(plan.calendar.id)

        logger.info(
            f"Rolled back calendar setup for practitioner {plan.practitioner_id} "
            f"({len(labels) - len(failures)}/{len(labels)} compensations succeeded)"
        )
        return failures

    def _forget(self, calendar_id: str) -> None:
        if self.on_calendar_removed is not None:
            self.on_calendar_removed(calendar_id)

    async def _hand_off_channel(self, calendar: Calendar) -> None:
        if self.channel_manager is None:
            return
        try:
            outcome = await self.channel_manager.setup_channel_for_calendar(calendar)
            if not outcome.success:
                logger.warning(f"Channel setup deferred for calendar {calendar.id}: {outcome.error}")
        except Exception as e:
            logger.warning(f"Channel setup failed for calendar {calendar.id}: {e}")

    async def _notify_practitioner(self, practitioner: Practitioner) -> None:
        if self.email_service is None:
            return
        try:
            await self.email_service.send_calendar_welcome(practitioner.email, practitioner.display_name)
        except Exception as e:
            logger.warning(f"Welcome email failed for practitioner {practitioner.id}: {redact_emails(str(e))}")

    async def _notify_admin_failure(self, result: ProvisioningResult) -> None:
        if self.email_service is None:
            return
        body = (
            f"Practitioner: {result.practitioner_id}\n"
            f"Step: {result.step.value}\n"
            f"Error: {result.error}\n"
            f"Retryable: {result.retryable}\n"
            f"Rolled back: {result.rolled_back}\n"
        )
        if result.rollback_errors:
            body += "Rollback failures:\n" + "\n".join(f"  - {e}" for e in result.rollback_errors)
        try:
            await self.email_service.send_admin_alert("Calendar setup failed", body)
        except Exception as e:
            logger.warning(f"Admin notification failed: {e}")

    async def batch_provision(self, practitioner_ids: Optional[List[str]] = None) -> BatchProvisioningResult:
        """
        Provision calendars for many practitioners.

        Without ids every active practitioner is considered; practitioners whose
        calendar is already active are skipped. Unknown ids are reported as failures.
        """
        started = self._clock()

        if practitioner_ids is None:
            try:
                practitioners = await self._with_retry(
                    "Practitioner listing", "batch", self.practitioners.list_active
                )
            except Exception as e:
                logger.error(f"Batch calendar setup could not list practitioners: {e}")
                return BatchProvisioningResult(
                    error=redact_emails(str(e)),
                    duration_seconds=(self._clock() - started).total_seconds(),
                )
            targets = [(p.id, p) for p in practitioners]
        else:
            # resolved inside each task so one failed lookup only fails that practitioner
            targets = [(practitioner_id, None) for practitioner_id in practitioner_ids]

        semaphore = asyncio.Semaphore(self.concurrency_limit)

        async def run(index: int, practitioner_id: str, practitioner: Optional[Practitioner]) -> PractitionerOutcome:
            stagger = (index // self.concurrency_limit) * self.batch_stagger_seconds
            if stagger:
                await self._sleep(stagger)

            async with semaphore:
                try:
                    return await self._provision_one(practitioner_id, practitioner)
                finally:
                    await self._sleep(self.operation_spacing_seconds)

        outcomes = await asyncio.gather(
            *(run(i, pid, p) for i, (pid, p) in enumerate(targets)),
            return_exceptions=True
        )

        batch = BatchProvisioningResult(total=len(targets))
        for (practitioner_id, practitioner), outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Batch provisioning crashed for practitioner {practitioner_id}: {outcome}")
                outcome = PractitionerOutcome(
                    practitioner_id=practitioner_id,
                    name=practitioner.display_name if practitioner else None,
                    email=practitioner.email if practitioner else None,
                    error=redact_emails(str(outcome)),
                )
            if outcome.skipped:
                batch.skipped += 1
            elif outcome.success:
                batch.successful += 1
            else:
                batch.failed += 1
            batch.results.append(outcome)

        batch.duration_seconds = (self._clock() - started).total_seconds()
        logger.info(
            f"Batch calendar setup completed in {batch.duration_seconds:.1f}s: {batch.successful} successful, "
            f"{batch.failed} failed, {batch.skipped} skipped"
        )
        await self._notify_batch_summary(batch)
        return batch

    async def _provision_one(self, practitioner_id: str, practitioner: Optional[Practitioner]) -> PractitionerOutcome:
        if practitioner is None:
            practitioner = await self._with_retry(
                "Practitioner lookup", practitioner_id, lambda: self.practitioners.get(practitioner_id)
            )
        if practitioner is None:
            return PractitionerOutcome(practitioner_id=practitioner_id, error="Practitioner not found")

        outcome = PractitionerOutcome(
            practitioner_id=practitioner_id, name=practitioner.display_name, email=practitioner.email
        )

        existing = await self.calendars.get_by_practitioner(practitioner_id)
        if existing is not None and existing.is_active:
            logger.info(f"Skipped practitioner {practitioner_id} - calendar already active")
            outcome.skipped = True
            outcome.success = True
            outcome.calendar_id = existing.id
            return outcome

        result = await self.provision(practitioner_id, practitioner.email)
        outcome.success = result.success
        outcome.error = result.error
        outcome.calendar_id = result.calendar_id
        return outcome

    async def _notify_batch_summary(self, batch: BatchProvisioningResult) -> None:
        if self.email_service is None or not batch.total:
            return
        lines = [
            f"Total: {batch.total}",
            f"Successful: {batch.successful}",
            f"Failed: {batch.failed}",
            f"Skipped (already set up): {batch.skipped}",
        ]
        for outcome in batch.results:
            if not outcome.success and not outcome.skipped:
                lines.append(f"  - {outcome.practitioner_id}: {outcome.error}")
        try:
            await self.email_service.send_admin_alert("Batch calendar setup summary", "\n".join(lines))
        except Exception as e:
            logger.warning(f"Batch summary notification failed: {e}")

    async def get_calendar_status(self, practitioner_id: str) -> CalendarSetupStatus:
        calendar = await self.calendars.get_by_practitioner(practitioner_id)
        status = CalendarSetupStatus(practitioner_id=practitioner_id)
        if calendar is None:
            return status

        status.calendar_exists = True
        status.integration_status = calendar.integration_status.value
        status.permissions_configured = calendar.acl_role == "writer" and calendar.is_active
        status.last_setup_attempt = calendar.updated_at or calendar.created_at
        if calendar.shared_email:
            status.share_permissions = [{
                "email": mask_email(calendar.shared_email),
                "role": calendar.acl_role,
                "verified": calendar.is_active,
            }]
        return status

    async def rollback_calendar_setup(self, practitioner_id: str) -> bool:
        """
        Admin rollback: mark the calendar error and detach it from the profile.

        The provider calendar is kept so its events are not lost.
        """
        calendar = await self.calendars.get_by_practitioner(practitioner_id)
        if calendar is None:
            logger.info(f"No calendar to roll back for practitioner {practitioner_id}")
            return False

        await self.calendars.update(calendar.id, {"integration_status": IntegrationStatus.ERROR.value})
        await self.practitioners.update_calendar_reference(practitioner_id, None, False)
        self._forget(calendar.id)
        logger.info(f"Rolled back calendar setup for practitioner {practitioner_id}")
        return True

    async def get_onboarding_stats(self) -> Dict[str, Any]:
        practitioners = await self.practitioners.list_active()
        calendars = {c.practitioner_id: c for c in await self.calendars.list_all()}

        configured = pending = errored = without = 0
        for practitioner in practitioners:
            calendar = calendars.get(practitioner.id)
            if calendar is None:
                without += 1
            elif calendar.integration_status == IntegrationStatus.ACTIVE:
                configured += 1
            elif calendar.integration_status == IntegrationStatus.ERROR:
                errored += 1
            else:
                pending += 1

        total = len(practitioners)
        return {
            "totalTherapists": total,
            "calendarsConfigured": configured,
            "calendarsPending": pending,
            "calendarsError": errored,
            "therapistsWithoutCalendar": without,
            "configurationRate": round(configured / total * 100, 1) if total else 0.0,
        }
