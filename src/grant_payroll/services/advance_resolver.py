"""Inter-organization advances for cross-funded payroll.

When an employee of one organization is paid from a grant owned by the
other, the home organization advances the net pay and settles with the
funding organization later. The advance is routed through the home
organization's hub grant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grant_payroll.calculators.types import (
    AllocationInput,
    EmployeeProfile,
    PayrollBreakdown,
    round_money,
)
from grant_payroll.config import DEFAULT_HUB_GRANT_CODES, parse_hub_grant_codes
from grant_payroll.exceptions import HubGrantNotFoundError
from grant_payroll.models import Grant, InterOrganizationAdvance, Payroll

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HubGrant:
    """Hub grant reference, detached from the session."""

    grant_id: UUID
    code: str
    organization: str


@dataclass(frozen=True)
class AdvancePreview:
    """An advance that would be created, without persisting it."""

    allocation_id: UUID | None
    from_organization: str
    to_organization: str
    hub_grant_code: str | None
    amount: Decimal

    def to_dict(self) -> dict[str, str | None]:
        return {
            "allocation_id": str(self.allocation_id) if self.allocation_id else None,
            "from_organization": self.from_organization,
            "to_organization": self.to_organization,
            "hub_grant_code": self.hub_grant_code,
            "amount": str(self.amount),
        }


def needs_advance(employee: EmployeeProfile, allocation: AllocationInput) -> bool:
    """Only grant-funded effort owned by another organization needs an advance."""
    if not allocation.is_grant_funded or not allocation.funding_organization:
        return False
    return allocation.funding_organization != employee.organization


class AdvanceResolver:
    """Creates and settles inter-organization advances."""

    def __init__(
        self,
        session: AsyncSession,
        hub_grant_codes: Mapping[str, str] | None = None,
    ):
        self.session = session
        self.hub_grant_codes = dict(
            hub_grant_codes
            if hub_grant_codes is not None
            else parse_hub_grant_codes(DEFAULT_HUB_GRANT_CODES)
        )
        self._hub_cache: dict[str, HubGrant] = {}

    async def hub_grant_for(self, organization: str) -> HubGrant:
        """Resolve the hub grant of an organization.

        Raises HubGrantNotFoundError if no code is mapped or no grant has it.
        """
        if organization in self._hub_cache:
            return self._hub_cache[organization]

        code = self.hub_grant_codes.get(organization)
        if code is None:
            raise HubGrantNotFoundError(organization)

        result = await self.session.execute(
            select(Grant.grant_id, Grant.code).where(Grant.code == code)
        )
        row = result.first()
        if row is None:
            raise HubGrantNotFoundError(organization)

        hub = HubGrant(grant_id=row.grant_id, code=row.code, organization=organization)
        self._hub_cache[organization] = hub
        return hub

    async def create_advance_if_needed(
        self,
        employee: EmployeeProfile,
        allocation: AllocationInput,
        payroll: Payroll,
        pay_period_date: date,
    ) -> InterOrganizationAdvance | None:
        """Record an advance for a cross-organization payroll row.

        Returns None when no advance is needed, or when the home
        organization has no hub grant (logged; the payroll still stands).
        """
        if not needs_advance(employee, allocation):
            return None

        try:
            hub = await self.hub_grant_for(employee.organization)
        except HubGrantNotFoundError as e:
            logger.error(
                "Cannot create inter-organization advance: %s",
                e,
                extra={
                    "payroll_id": str(payroll.payroll_id),
                    "organization": e.organization,
                },
            )
            return None

        advance = InterOrganizationAdvance(
            payroll_id=payroll.payroll_id,
            from_organization=employee.organization,
            to_organization=allocation.funding_organization,
            via_grant_id=hub.grant_id,
            amount=round_money(payroll.net_salary),
            advance_date=pay_period_date,
            notes=(
                f"Payroll advance for {employee.full_name} "
                f"({allocation.grant_code}) via {hub.code}"
            ),
        )
        self.session.add(advance)

        logger.info(
            "Created inter-organization advance",
            extra={
                "payroll_id": str(payroll.payroll_id),
                "from_organization": advance.from_organization,
                "to_organization": advance.to_organization,
                "hub_grant": hub.code,
            },
        )
        return advance

    def preview_advances(
        self,
        employee: EmployeeProfile,
        allocations: Sequence[AllocationInput],
        breakdowns: Sequence[PayrollBreakdown],
    ) -> list[AdvancePreview]:
        """What create_advance_if_needed would record, without writing."""
        previews: list[AdvancePreview] = []
        for allocation, breakdown in zip(allocations, breakdowns):
            if not needs_advance(employee, allocation):
                continue
            previews.append(
                AdvancePreview(
                    allocation_id=allocation.allocation_id,
                    from_organization=employee.organization,
                    to_organization=allocation.funding_organization or "",
                    hub_grant_code=self.hub_grant_codes.get(employee.organization),
                    amount=round_money(breakdown.net_salary),
                )
            )
        return previews

    async def outstanding(self, organization: str | None = None) -> list[InterOrganizationAdvance]:
        """Unsettled advances, optionally for one lending organization."""
        query = select(InterOrganizationAdvance).where(
            InterOrganizationAdvance.settlement_date.is_(None)
        )
        if organization is not None:
            query = query.where(InterOrganizationAdvance.from_organization == organization)
        query = query.order_by(InterOrganizationAdvance.advance_date)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def settle(self, advance_id: UUID, settlement_date: date) -> InterOrganizationAdvance:
        """Mark an advance as settled."""
        advance = await self.session.get(InterOrganizationAdvance, advance_id)
        if advance is None:
            raise ValueError(f"Advance {advance_id} not found")
        if advance.is_settled:
            raise ValueError(f"Advance {advance_id} already settled on {advance.settlement_date}")
        if settlement_date < advance.advance_date:
            raise ValueError("Settlement date cannot precede the advance date")

        advance.settlement_date = settlement_date
        await self.session.flush()
        return advance

    @staticmethod
    def outstanding_total(advances: Iterable[InterOrganizationAdvance]) -> Decimal:
        return sum((a.amount for a in advances if not a.is_settled), Decimal("0"))
