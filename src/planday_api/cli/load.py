"""Load CLI command.

Loads every employee (optionally with payrates, salaries and contract
rules) together with the portal's reference data, and writes the result as
JSON.

Usage:
    python -m planday_api.cli load --payrates --salaries
    python -m planday_api.cli load --output employees.json
    python -m planday_api.cli check
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from planday_api.client.core import PlandayClient
from planday_api.config.settings import get_settings
from planday_api.scheduler.errors import ApiError, SchedulerError
from planday_api.services.employee_loader import EmployeeLoader
from planday_api.services.reference_data import ReferenceDataLoader

if TYPE_CHECKING:
    from planday_api.scheduler.batch_loader import BatchProgress
    from planday_api.scheduler.request_queue import QueueStatistics

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if not verbose:
        # Per-request transport chatter
        logging.getLogger("planday_api.utils.http_client").setLevel(logging.WARNING)


def _report_progress(progress: BatchProgress) -> None:
    logger.info(
        "[%d/%d] %.0f%% %s",
        progress.completed_count,
        progress.total,
        progress.percentage,
        progress.current_label,
    )


def format_statistics(name: str, stats: QueueStatistics) -> str:
    """Render queue statistics as a short text block."""
    return "\n".join(
        [
            f"{name} queue:",
            f"  Speed tier:            {stats.current_speed_tier.value}",
            f"  Pending / active:      {stats.queue_length} / {stats.active_count}",
            f"  Requests last second:  {stats.requests_last_second}",
            f"  Requests last minute:  {stats.requests_last_minute}",
            f"  Recent errors:         {stats.recent_error_count}",
            f"  Consecutive successes: {stats.consecutive_successes}",
        ]
    )


async def _run_load_async(
    include_payrates: bool,
    include_salaries: bool,
    include_contract_rules: bool,
    output: str | None,
) -> int:
    settings = get_settings()
    try:
        client = PlandayClient.from_settings(settings)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    async with client:
        employee_loader = EmployeeLoader(client)
        reference_loader = ReferenceDataLoader(client)
        try:
            reference = await reference_loader.fetch_all(
                include_supervisors=True,
                include_contract_rules=include_contract_rules,
            )
            outcome = await employee_loader.load_enriched_detailed(
                include_payrates=include_payrates,
                include_salaries=include_salaries,
                include_contract_rules=include_contract_rules,
                on_progress=_report_progress,
            )
        except ApiError as e:
            print(f"Error: {e.user_message} ({e})", file=sys.stderr)
            return 1
        except SchedulerError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            await employee_loader.close()

        document: dict[str, Any] = {
            "employees": [
                employee.model_dump(mode="json", by_alias=True)
                for employee in outcome.results
                if employee is not None
            ],
            "failed_employee_ids": [failure.entity_id for failure in outcome.failures],
            "reference_data": {
                "departments": _dump(reference.departments),
                "employeeGroups": _dump(reference.employee_groups),
                "employeeTypes": _dump(reference.employee_types),
                "supervisors": _dump(reference.supervisors),
                "contractRules": _dump(reference.contract_rules),
            },
        }
        text = json.dumps(document, indent=2)
        if output:
            Path(output).write_text(text)
            print(f"Saved {len(outcome.results)} employees to: {output}")
        else:
            print(text)

        print(format_statistics("API", client.get_statistics()), file=sys.stderr)
        print(
            format_statistics(
                "Employee batch", employee_loader.batch_loader.get_statistics()
            ),
            file=sys.stderr,
        )
        if outcome.failures:
            print(
                f"{outcome.failed} employees loaded without extra data",
                file=sys.stderr,
            )
    return 0


async def _run_check_async() -> int:
    settings = get_settings()
    try:
        client = PlandayClient.from_settings(settings)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    async with client:
        ok = await client.test_connection()
    print("Connection OK" if ok else "Connection failed")
    return 0 if ok else 1


def _dump(models: list[Any]) -> list[dict[str, Any]]:
    return [model.model_dump(mode="json", by_alias=True) for model in models]


def run_load(
    include_payrates: bool = False,
    include_salaries: bool = False,
    include_contract_rules: bool = False,
    output: str | None = None,
    verbose: bool = False,
) -> int:
    """Run load command.

    Args:
        include_payrates: Load employee group payrates
        include_salaries: Load fixed salaries
        include_contract_rules: Load contract rules
        output: File to write JSON to; stdout if None
        verbose: Enable debug logging

    Returns:
        Exit code (0 for success)
    """
    _configure_logging(verbose)
    return asyncio.run(
        _run_load_async(
            include_payrates=include_payrates,
            include_salaries=include_salaries,
            include_contract_rules=include_contract_rules,
            output=output,
        )
    )


def run_check(verbose: bool = False) -> int:
    """Run check command.

    Returns:
        Exit code (0 if the connection works)
    """
    _configure_logging(verbose)
    return asyncio.run(_run_check_async())
