"""Internship posting workflow."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from app.core.security import Principal, Role
from app.models import Application, Internship
from app.queues.models import Job
from app.utils.helpers import utcnow
from app.workflows.base import Workflow, ensure_actor, review_record
from app.workflows.machine import StateMachine, transition

logger = logging.getLogger(__name__)

INTERNSHIP_MACHINE = StateMachine(
    "internship",
    [
        transition("submit", ["draft"], "pending_approval", [Role.COMPANY]),
        transition("approve", ["pending_approval"], "approved", [Role.MENTOR, Role.ADMIN]),
        transition("reject", ["pending_approval"], "cancelled", [Role.MENTOR, Role.ADMIN], required=["reason"]),
        transition("cancel", ["draft", "pending_approval", "approved"], "cancelled", [Role.COMPANY]),
        transition("close", ["approved"], "closed", [Role.COMPANY, Role.ADMIN]),
    ],
    terminal_states=["closed", "cancelled"],
)


class InternshipWorkflow(Workflow):
    """Posting, approval and closing of internships."""

    async def _load_for(self, principal: Principal, internship_id: Any, action: str, **fields: Any):
        internship = await self.load(Internship, internship_id, "Internship", for_update=True)
        t = INTERNSHIP_MACHINE.resolve(action, internship.status, principal.role, fields)
        if principal.role == Role.COMPANY:
            ensure_actor(principal, internship.company_id, "internship")
        return internship, t

    def _notify_company(self, internship: Internship, title: str, message: str) -> None:
        self.notify(
            "notify-company",
            {
                "companyId": str(internship.company_id),
                "title": title,
                "message": message,
                "type": "internship",
                "metadata": {"internshipId": str(internship.id), "status": internship.status},
            },
        )

    async def submit(self, principal: Principal, internship_id: Any) -> Internship:
        internship, t = await self._load_for(principal, internship_id, "submit")
        internship.status = t.target
        await self.session.commit()
        return internship

    async def approve(self, principal: Principal, internship_id: Any, comments: Optional[str] = None) -> Internship:
        internship, t = await self._load_for(principal, internship_id, "approve")
        internship.status = t.target
        internship.approval = review_record(principal, "approved", comments)
        await self.session.commit()
        self._notify_company(internship, "Internship approved", f"{internship.title} is now open for applications.")
        return internship

    async def reject(self, principal: Principal, internship_id: Any, reason: Optional[str] = None) -> Internship:
        internship, t = await self._load_for(principal, internship_id, "reject", reason=reason)
        internship.status = t.target
        internship.approval = review_record(principal, "rejected", reason)
        await self.session.commit()
        self._notify_company(internship, "Internship not approved", reason)
        return internship

    async def cancel(self, principal: Principal, internship_id: Any, reason: Optional[str] = None) -> Internship:
        internship, t = await self._load_for(principal, internship_id, "cancel")
        internship.status = t.target
        internship.closed_at = utcnow()
        await self.session.commit()
        logger.info(f"🚫 Internship {internship.title} cancelled: {reason or 'no reason given'}")
        return internship

    async def close(self, principal: Principal, internship_id: Any) -> Dict[str, Any]:
        """
        Close the internship and queue completion processing for every accepted
        application. Job ids are derived from the pair, so closing twice never
        queues a pair twice.
        """
        internship, t = await self._load_for(principal, internship_id, "close")
        internship.status = t.target
        internship.closed_at = utcnow()
        await self.session.commit()

        student_ids = (
            await self.session.execute(
                select(Application.student_id).where(
                    Application.internship_id == internship.id,
                    Application.status == "accepted",
                )
            )
        ).scalars().all()

        jobs: List[Job] = []
        for student_id in student_ids:
            jobs.append(
                await self.registry.enqueue(
                    "completion",
                    "process-completion",
                    {"studentId": str(student_id), "internshipId": str(internship.id)},
                    job_id=f"completion:{student_id}:{internship.id}",
                )
            )
        logger.info(f"🏁 Internship {internship.title} closed; {len(jobs)} completion job(s) queued")
        return {"internship": internship, "jobs": jobs}
