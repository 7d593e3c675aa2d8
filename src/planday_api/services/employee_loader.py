"""Employee loading with payrates, salaries and contract rules.

Basic employee records come from the paginated /hr/v1.0/employees endpoint.
Enrichment runs one composite operation per employee through a
BatchLoader, which owns its own queue. The HTTP sub-requests of each
composite operation go through the client's queue, so a composite never
holds a slot that its own sub-requests are waiting for.

Example usage:
    async with PlandayClient.from_settings(settings) as client:
        loader = EmployeeLoader(client)
        employees = await loader.load_enriched(
            include_payrates=True,
            include_salaries=True,
            on_progress=lambda p: print(f"{p.completed_count}/{p.total}"),
        )
        await loader.close()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from planday_api.scheduler.batch_loader import BatchLoader, BatchOutcome
from planday_api.scheduler.errors import ApiError
from planday_api.services.models import (
    Employee,
    EmployeeContractRule,
    EmployeeGroupPayrate,
    EnrichedEmployee,
    Page,
    SalaryData,
    parse_model,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from planday_api.client.core import PlandayClient
    from planday_api.scheduler.batch_loader import BatchProgress

logger = logging.getLogger(__name__)

EMPLOYEES_PATH = "/hr/v1.0/employees"
PAYRATE_PATH = "/pay/v1.0/payrates/employeeGroups/{group_id}/employees/{employee_id}"
SALARY_PATH = "/pay/v1.0/salaries/employees/{employee_id}"
EMPLOYEE_CONTRACT_RULES_PATH = "/contractrules/v1.0/employees/{employee_id}"

PAGE_SIZE = 50
MAX_EMPLOYEES = 10_000
# Each sub-request is already retried by the client
EMPLOYEE_LOAD_RETRIES = 0

# Lower is serviced first
EMPLOYEES_PRIORITY = 100
PAYRATES_PRIORITY = 200
SALARIES_PRIORITY = 300
CONTRACT_RULES_PRIORITY = 400

# Statuses meaning "this employee has no such record"
_NOT_FOUND_STATUSES = frozenset({204, 404})

_SPECIAL_FIELDS = ("BankAccount", "BirthDate", "Ssn")


class EmployeeLoader:
    """Loads employees and their dependent data through the scheduler."""

    def __init__(
        self,
        client: PlandayClient,
        *,
        batch_loader: BatchLoader | None = None,
    ) -> None:
        """Initialize the loader.

        Args:
            client: Client every HTTP request goes through
            batch_loader: Loader for per-employee enrichment. One with its
                          own queue is created from the client's settings
                          if not provided.
        """
        self._client = client
        self._owns_batch_loader = batch_loader is None
        self._batch_loader = batch_loader or BatchLoader.create(
            client.settings, name="employees"
        )

    @property
    def batch_loader(self) -> BatchLoader:
        return self._batch_loader

    async def close(self) -> None:
        """Shut down the batch queue if this loader created it."""
        if self._owns_batch_loader:
            await self._batch_loader.retry_manager.queue.aclose()

    async def fetch_employees(
        self,
        limit: int = PAGE_SIZE,
        offset: int = 0,
        *,
        special: Sequence[str] | None = None,
        include_security_groups: bool | None = None,
        search_query: str | None = None,
        created_from: str | None = None,
        created_to: str | None = None,
        modified_from: str | None = None,
        modified_to: str | None = None,
    ) -> Page[Employee]:
        """Fetch one page of employees.

        Args:
            limit: Page size
            offset: Index of the first employee
            special: Extra sensitive fields to include (e.g. "Ssn")
            include_security_groups: Include security group membership
            search_query: Free-text filter
            created_from: Only employees created on or after this date
            created_to: Only employees created on or before this date
            modified_from: Only employees modified on or after this date
            modified_to: Only employees modified on or before this date

        Returns:
            The page of employees with its paging block

        Raises:
            ResponseValidationError: If the payload is not an employee list
        """
        payload = await self._client.request(
            EMPLOYEES_PATH,
            params={
                "limit": limit,
                "offset": offset,
                "special": list(special) if special else None,
                "includeSecurityGroups": include_security_groups,
                "searchQuery": search_query,
                "createdFrom": created_from,
                "createdTo": created_to,
                "modifiedFrom": modified_from,
                "modifiedTo": modified_to,
            },
            priority=EMPLOYEES_PRIORITY,
        )
        if isinstance(payload, list):
            payload = {"data": payload}
        return parse_model(Page[Employee], payload)

    async def fetch_all_employees(self) -> list[Employee]:
        """Fetch every employee, one page at a time.

        Pagination stops at the first short page, or after MAX_EMPLOYEES
        records as a safety limit.
        """
        employees: list[Employee] = []
        offset = 0

        while True:
            page = await self.fetch_employees(
                PAGE_SIZE,
                offset,
                special=_SPECIAL_FIELDS,
                include_security_groups=True,
            )
            employees.extend(page.data)
            logger.debug(
                "Page %d: loaded %d employees (total: %d)",
                offset // PAGE_SIZE + 1,
                len(page.data),
                len(employees),
            )

            if len(page.data) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
            if offset >= MAX_EMPLOYEES:
                logger.warning(
                    "Pagination safety limit reached (%d employees)", MAX_EMPLOYEES
                )
                break

            await asyncio.sleep(self._client.speed_controller.paced_delay())

        logger.info("Loaded %d employees", len(employees))
        return employees

    async def fetch_employee_payrates(
        self, employee_id: int, group_ids: Sequence[int]
    ) -> list[EmployeeGroupPayrate]:
        """Fetch the employee's payrate in each of the given groups.

        Groups without a payrate for the employee are skipped.

        Raises:
            ApiError: If any group request fails with anything but 404
        """
        if not group_ids:
            return []

        results = await asyncio.gather(
            *(
                self._fetch_group_payrate(employee_id, group_id)
                for group_id in group_ids
            ),
            return_exceptions=True,
        )
        payrates: list[EmployeeGroupPayrate] = []
        for result in results:
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                payrates.append(result)

        logger.debug(
            "Found %d payrates for employee %d across %d groups",
            len(payrates),
            employee_id,
            len(group_ids),
        )
        return payrates

    async def _fetch_group_payrate(
        self, employee_id: int, group_id: int
    ) -> EmployeeGroupPayrate | None:
        try:
            payload = await self._client.request(
                PAYRATE_PATH.format(group_id=group_id, employee_id=employee_id),
                priority=PAYRATES_PRIORITY,
                entity_id=employee_id,
            )
        except ApiError as e:
            if e.status in _NOT_FOUND_STATUSES:
                return None
            raise

        data = _unwrap(payload)
        if not data or data.get("rate") is None:
            return None
        return parse_model(
            EmployeeGroupPayrate,
            {"employeeId": employee_id, "employeeGroupId": group_id, **data},
        )

    async def fetch_employee_salary(self, employee_id: int) -> SalaryData | None:
        """Fetch the employee's fixed salary, or None if there is none."""
        try:
            payload = await self._client.request(
                SALARY_PATH.format(employee_id=employee_id),
                priority=SALARIES_PRIORITY,
                entity_id=employee_id,
            )
        except ApiError as e:
            if e.status in _NOT_FOUND_STATUSES:
                return None
            raise

        data = _unwrap(payload)
        if not data:
            return None
        return parse_model(SalaryData, {"employeeId": employee_id, **data})

    async def fetch_employee_contract_rules(
        self, employee_id: int
    ) -> list[EmployeeContractRule]:
        """Fetch the contract rules assigned to the employee."""
        try:
            payload = await self._client.request(
                EMPLOYEE_CONTRACT_RULES_PATH.format(employee_id=employee_id),
                priority=CONTRACT_RULES_PRIORITY,
                entity_id=employee_id,
            )
        except ApiError as e:
            if e.status in _NOT_FOUND_STATUSES:
                return []
            raise

        data = payload.get("data") if isinstance(payload, dict) else payload
        if not data:
            return []
        if isinstance(data, dict):
            data = [data]
        return [parse_model(EmployeeContractRule, rule) for rule in data]

    async def load_enriched(
        self,
        *,
        include_payrates: bool = False,
        include_salaries: bool = False,
        include_contract_rules: bool = False,
        on_progress: Callable[[BatchProgress], None] | None = None,
    ) -> list[EnrichedEmployee]:
        """Load all employees together with the requested extra data.

        An employee whose extra data cannot be loaded is returned with empty
        extras rather than failing the whole load.
        """
        outcome = await self.load_enriched_detailed(
            include_payrates=include_payrates,
            include_salaries=include_salaries,
            include_contract_rules=include_contract_rules,
            on_progress=on_progress,
        )
        return outcome.results

    async def load_enriched_detailed(
        self,
        *,
        include_payrates: bool = False,
        include_salaries: bool = False,
        include_contract_rules: bool = False,
        on_progress: Callable[[BatchProgress], None] | None = None,
    ) -> BatchOutcome[EnrichedEmployee]:
        """Same as load_enriched(), also reporting which employees fell back."""
        employees = await self.fetch_all_employees()

        if not (include_payrates or include_salaries or include_contract_rules):
            return BatchOutcome(
                results=[EnrichedEmployee.from_employee(e) for e in employees]
            )

        async def enrich(employee: Employee) -> EnrichedEmployee:
            payrates, salary, contract_rules = await asyncio.gather(
                self.fetch_employee_payrates(employee.id, employee.employee_groups)
                if include_payrates
                else _resolved([]),
                self.fetch_employee_salary(employee.id)
                if include_salaries
                else _resolved(None),
                self.fetch_employee_contract_rules(employee.id)
                if include_contract_rules
                else _resolved([]),
            )
            return EnrichedEmployee.from_employee(
                employee,
                payrates=payrates,
                salary=salary,
                contract_rules=contract_rules,
            )

        outcome = await self._batch_loader.load_all_detailed(
            employees,
            enrich,
            on_progress,
            fallback=lambda employee, error: EnrichedEmployee.from_employee(employee),
            label=lambda employee: employee.full_name or f"employee {employee.id}",
            entity_id=lambda employee: employee.id,
            max_retries=EMPLOYEE_LOAD_RETRIES,
        )
        if outcome.failures:
            logger.warning(
                "%d of %d employees loaded without extra data",
                outcome.failed,
                len(employees),
            )
        return outcome  # type: ignore[return-value]


async def _resolved(value: Any) -> Any:
    return value


def _unwrap(payload: Any) -> dict[str, Any] | None:
    """Return the "data" object of a single-record response."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data", payload)
    return data if isinstance(data, dict) else None
