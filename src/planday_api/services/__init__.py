"""Loaders for Planday employee and reference data."""

from planday_api.services.employee_loader import EmployeeLoader
from planday_api.services.models import (
    ContractRule,
    Department,
    Employee,
    EmployeeContractRule,
    EmployeeGroup,
    EmployeeGroupPayrate,
    EmployeeType,
    EnrichedEmployee,
    Page,
    Paging,
    SalaryData,
    Supervisor,
    parse_model,
)
from planday_api.services.reference_data import ReferenceData, ReferenceDataLoader

__all__ = [
    "ContractRule",
    "Department",
    "Employee",
    "EmployeeContractRule",
    "EmployeeGroup",
    "EmployeeGroupPayrate",
    "EmployeeLoader",
    "EmployeeType",
    "EnrichedEmployee",
    "Page",
    "Paging",
    "ReferenceData",
    "ReferenceDataLoader",
    "SalaryData",
    "Supervisor",
    "parse_model",
]
