"""Cached loaders for portal reference data.

Departments, employee groups, employee types, supervisors and contract
rules change rarely, so each list is fetched once and served from memory
until clear_cache() is called. Reference requests run at a high priority
so they are ahead of bulk employee work in the queue.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from planday_api.services.models import (
    ContractRule,
    Department,
    EmployeeGroup,
    EmployeeType,
    Page,
    Supervisor,
    parse_model,
)

if TYPE_CHECKING:
    from pydantic import BaseModel

    from planday_api.client.core import PlandayClient

logger = logging.getLogger(__name__)

REFERENCE_PRIORITY = 50

DEPARTMENTS_PATH = "/hr/v1.0/departments"
EMPLOYEE_GROUPS_PATH = "/hr/v1.0/employeegroups"
EMPLOYEE_TYPES_PATH = "/hr/v1.0/employeetypes"
SUPERVISORS_PATH = "/hr/v1.0/employees/supervisors"
CONTRACT_RULES_PATH = "/contractrules/v1.0/contractrules"


@dataclass(frozen=True, slots=True)
class ReferenceData:
    """All reference lists of a portal."""

    departments: list[Department] = field(default_factory=list)
    employee_groups: list[EmployeeGroup] = field(default_factory=list)
    employee_types: list[EmployeeType] = field(default_factory=list)
    supervisors: list[Supervisor] = field(default_factory=list)
    contract_rules: list[ContractRule] = field(default_factory=list)


class ReferenceDataLoader:
    """Fetches and caches reference lists."""

    def __init__(self, client: PlandayClient) -> None:
        self._client = client
        self._cache: dict[str, list[Any]] = {}

    async def fetch_departments(self, use_cache: bool = True) -> list[Department]:
        return await self._fetch_list(
            "departments", DEPARTMENTS_PATH, Department, use_cache
        )

    async def fetch_employee_groups(
        self, use_cache: bool = True
    ) -> list[EmployeeGroup]:
        return await self._fetch_list(
            "employee_groups", EMPLOYEE_GROUPS_PATH, EmployeeGroup, use_cache
        )

    async def fetch_employee_types(self, use_cache: bool = True) -> list[EmployeeType]:
        return await self._fetch_list(
            "employee_types", EMPLOYEE_TYPES_PATH, EmployeeType, use_cache
        )

    async def fetch_supervisors(self, use_cache: bool = True) -> list[Supervisor]:
        return await self._fetch_list(
            "supervisors", SUPERVISORS_PATH, Supervisor, use_cache
        )

    async def fetch_contract_rules(self, use_cache: bool = True) -> list[ContractRule]:
        return await self._fetch_list(
            "contract_rules", CONTRACT_RULES_PATH, ContractRule, use_cache
        )

    async def fetch_all(
        self,
        *,
        include_supervisors: bool = False,
        include_contract_rules: bool = False,
        use_cache: bool = True,
    ) -> ReferenceData:
        """Fetch all reference lists concurrently.

        Args:
            include_supervisors: Also fetch supervisors
            include_contract_rules: Also fetch contract rules
            use_cache: Serve lists that were already fetched from memory

        Returns:
            ReferenceData; lists that were not requested are empty
        """
        departments, groups, types, supervisors, contract_rules = await asyncio.gather(
            self.fetch_departments(use_cache),
            self.fetch_employee_groups(use_cache),
            self.fetch_employee_types(use_cache),
            self.fetch_supervisors(use_cache) if include_supervisors else _empty(),
            self.fetch_contract_rules(use_cache)
            if include_contract_rules
            else _empty(),
        )
        data = ReferenceData(
            departments=departments,
            employee_groups=groups,
            employee_types=types,
            supervisors=supervisors,
            contract_rules=contract_rules,
        )
        logger.info(
            "Reference data loaded: %d departments, %d employee groups, "
            "%d employee types, %d supervisors, %d contract rules",
            len(data.departments),
            len(data.employee_groups),
            len(data.employee_types),
            len(data.supervisors),
            len(data.contract_rules),
        )
        return data

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("Reference data cache cleared")

    def cache_status(self) -> dict[str, int | None]:
        """Number of cached records per list, None where nothing is cached."""
        return {
            name: len(self._cache[name]) if name in self._cache else None
            for name in (
                "departments",
                "employee_groups",
                "employee_types",
                "supervisors",
                "contract_rules",
            )
        }

    async def _fetch_list(
        self,
        name: str,
        path: str,
        model: type[BaseModel],
        use_cache: bool,
    ) -> list[Any]:
        if use_cache and name in self._cache:
            logger.debug("Using cached %s", name)
            return self._cache[name]

        payload = await self._client.request(path, priority=REFERENCE_PRIORITY)
        if isinstance(payload, list):
            payload = {"data": payload}
        items = parse_model(Page[model], payload).data  # type: ignore[valid-type]

        self._cache[name] = items
        logger.debug("Loaded %d %s", len(items), name)
        return items


async def _empty() -> list[Any]:
    return []
