# SPDX-License-Identifier: Apache-2.0

"""
Disbursement templates and tranche schedules.

Templates are validated once, when a scheme configuration is published.
Tranche computation trusts a published template.
"""

from datetime import datetime, timedelta
from typing import List, Sequence

from models.entities import DistributionStep, Tranche
from domain.errors import ConstraintViolation


INVALID_TEMPLATE = "invalid_distribution_template"


def validate_distribution_template(steps: Sequence[DistributionStep]) -> None:
    """
    Validate a scheme's percentage/day-offset template.

    Args:
        steps: Template steps in disbursement order

    Raises:
        ConstraintViolation: If the template is empty, a step is out of range,
            or the percentages do not add up to exactly 100
    """
    if not steps:
        raise ConstraintViolation(INVALID_TEMPLATE, "Distribution template needs at least one step")

    errors = []
    for index, step in enumerate(steps, start=1):
        if not 1 <= step.percentage <= 100:
            errors.append(f"step {index}: percentage must be between 1 and 100")
        if step.days_from_approval < 0:
            errors.append(f"step {index}: days from approval cannot be negative")

    total = sum(step.percentage for step in steps)
    if total != 100:
        errors.append(f"percentages sum to {total}, expected 100")

    if errors:
        raise ConstraintViolation(
            INVALID_TEMPLATE,
            f"Invalid distribution template: {'; '.join(errors)}",
            {"errors": errors, "total_percentage": total}
        )


def compute_tranches(approved_amount: int, template: Sequence[DistributionStep],
                     approved_at: datetime) -> List[Tranche]:
    """
    Split an approved amount into unpaid tranches.

    Each tranche gets the floor of its share; the rounding remainder goes to
    the last tranche so the amounts always add up to ``approved_amount``.

    Args:
        approved_amount: Approved amount in minor currency units
        template: Published distribution template
        approved_at: Approval time that day offsets count from

    Returns:
        List of tranches numbered from 1
    """
    if not template:
        return []

    amounts = [approved_amount * step.percentage // 100 for step in template]
    amounts[-1] += approved_amount - sum(amounts)

    return [
        Tranche(
            number=number,
            percentage=step.percentage,
            amount=amount,
            due_date=approved_at + timedelta(days=step.days_from_approval),
            description=step.description
        )
        for number, (step, amount) in enumerate(zip(template, amounts), start=1)
    ]
