"""Company verification workflow."""

import logging
from typing import Any, List, Optional

from app.core.security import Principal, Role
from app.models import Company
from app.workflows.base import Workflow, review_record
from app.workflows.machine import StateMachine, transition

logger = logging.getLogger(__name__)

COMPANY_MACHINE = StateMachine(
    "company",
    [
        transition("verify", ["pending_verification"], "verified", [Role.ADMIN]),
        transition("reject", ["pending_verification"], "rejected", [Role.ADMIN], required=["reason"]),
        transition("suspend", ["verified"], "suspended", [Role.ADMIN], required=["reason"]),
    ],
    terminal_states=["rejected", "suspended"],
)


class CompanyWorkflow(Workflow):
    """Admin decisions on company registrations."""

    async def _decide(
        self,
        principal: Principal,
        company_id: Any,
        action: str,
        decision: str,
        comments: Optional[str] = None,
        **fields: Any,
    ) -> Company:
        company = await self.load(Company, company_id, "Company", for_update=True)
        t = COMPANY_MACHINE.resolve(action, company.status, principal.role, fields)
        company.status = t.target
        company.admin_review = review_record(principal, decision, comments)
        await self.session.commit()

        logger.info(f"🏢 Company {company.company_name} {decision} by {principal.identity}")
        self.notify(
            "notify-company",
            {
                "companyId": str(company.id),
                "title": f"Company verification: {decision}",
                "message": comments or f"Your company account was {decision}.",
                "priority": "high",
                "type": "company",
                "metadata": {"status": company.status},
            },
        )
        return company

    async def verify(self, principal: Principal, company_id: Any, comments: Optional[str] = None) -> Company:
        return await self._decide(principal, company_id, "verify", "verified", comments)

    async def reject(self, principal: Principal, company_id: Any, reason: Optional[str] = None) -> Company:
        return await self._decide(principal, company_id, "reject", "rejected", reason, reason=reason)

    async def suspend(
        self,
        principal: Principal,
        company_id: Any,
        reason: Optional[str] = None,
        restrictions: Optional[List[str]] = None,
    ) -> Company:
        company = await self._decide(principal, company_id, "suspend", "suspended", reason, reason=reason)
        if restrictions:
            company.restrictions.extend(restrictions)
            await self.session.commit()
        return company
