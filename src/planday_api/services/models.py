"""Pydantic models for Planday API payloads.

Field names are snake_case in Python and camelCase on the wire. Unknown
fields are kept on Employee (Planday portals can define custom fields) and
ignored elsewhere.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from planday_api.scheduler.errors import ResponseValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)
ItemT = TypeVar("ItemT")


class PlandayModel(BaseModel):
    """Base model mapping camelCase payload keys to snake_case fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# Pagination
# =============================================================================


class Paging(PlandayModel):
    """Paging block of a list response."""

    offset: int = 0
    limit: int = 0
    total: int = 0


class Page(PlandayModel, Generic[ItemT]):
    """A list response: one page of items plus paging metadata."""

    paging: Paging = Field(default_factory=Paging)
    data: list[ItemT] = Field(default_factory=list)


# =============================================================================
# Reference data
# =============================================================================


class Department(PlandayModel):
    id: int
    name: str
    number: str | None = None


class EmployeeGroup(PlandayModel):
    id: int
    name: str


class EmployeeType(PlandayModel):
    id: int
    name: str
    description: str | None = None


class Supervisor(PlandayModel):
    id: int
    employee_id: int
    name: str


class ContractRule(PlandayModel):
    """A contract rule defined on the portal."""

    id: int
    name: str
    description: str | None = None
    rule_type: str | None = None
    settings: Any = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


# =============================================================================
# Employees
# =============================================================================


class Employee(PlandayModel):
    """Basic employee record from /hr/v1.0/employees.

    departments and employee_groups hold ids; the API may send either bare
    ids or objects with an "id" key.
    """

    model_config = ConfigDict(extra="allow")

    id: int
    first_name: str = ""
    last_name: str = ""
    user_name: str | None = None
    email: str | None = None
    cell_phone: str | None = None
    departments: list[int] = Field(default_factory=list)
    employee_groups: list[int] = Field(default_factory=list)
    employee_type_id: int | None = None
    hired_from: str | None = None
    supervisor_id: int | None = None
    supervisor_employee_id: int | None = None
    is_active: bool = True

    @field_validator("departments", "employee_groups", mode="before")
    @classmethod
    def _extract_ids(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [
                item.get("id") if isinstance(item, dict) else item for item in value
            ]
        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class EmployeeGroupPayrate(PlandayModel):
    """Payrate of an employee within one employee group."""

    employee_id: int
    employee_group_id: int
    rate: float
    wage_type: str = "HourlyRate"
    valid_from: str | None = None
    valid_to: str | None = None
    salary_code: str | None = None


class SalaryData(PlandayModel):
    """Fixed salary of an employee."""

    employee_id: int
    salary: float
    hours: float | None = None
    valid_from: str | None = None
    salary_type_id: int | None = None
    created_by_employee_id: int | None = None
    created_at: str | None = None


class EmployeeContractRule(PlandayModel):
    """Contract rule assigned to an employee."""

    id: int
    name: str
    description: str | None = None


class EnrichedEmployee(Employee):
    """Employee together with payrates, salary and contract rules."""

    employee_group_payrates: list[EmployeeGroupPayrate] = Field(default_factory=list)
    salary_data: SalaryData | None = None
    contract_rules: list[EmployeeContractRule] = Field(default_factory=list)

    @classmethod
    def from_employee(
        cls,
        employee: Employee,
        *,
        payrates: list[EmployeeGroupPayrate] | None = None,
        salary: SalaryData | None = None,
        contract_rules: list[EmployeeContractRule] | None = None,
    ) -> EnrichedEmployee:
        """Attach extra data to a basic employee record."""
        return cls.model_validate(
            {
                **employee.model_dump(),
                "employee_group_payrates": payrates or [],
                "salary_data": salary,
                "contract_rules": contract_rules or [],
            }
        )


def parse_model(model: type[ModelT], payload: Any) -> ModelT:
    """Validate a response payload against a model.

    Raises:
        ResponseValidationError: If the payload does not match the model
    """
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ResponseValidationError(
            f"Unexpected {model.__name__} payload: {e.error_count()} validation "
            "error(s)",
            details={"errors": e.errors(include_url=False)},
        ) from e
