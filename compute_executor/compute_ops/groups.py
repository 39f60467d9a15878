"""Group execution planning for fleet-wide jobs"""

import logging
from typing import Iterable, List, Optional

from ..config import GROUP_MEMBER_TIMEOUT
from .errors import ErrorCodes, ValidationError
from .models import Group, GroupExecutionPlan


class GroupExecutionPlanner:
    """Computes member set, batching and stop-on-failure policy for a group job"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def plan(
        self,
        group: Group,
        explicit_member_subset: Optional[Iterable[str]] = None,
        parallel: bool = True,
        stop_on_failure: bool = False,
        per_member_timeout_seconds: int = GROUP_MEMBER_TIMEOUT,
        batch_size: Optional[int] = None,
    ) -> GroupExecutionPlan:
        """
        Plan a group-wide execution.

        Args:
            group: Group with its current membership
            explicit_member_subset: Member ids, names or serial numbers to target
            parallel: Run members concurrently on the service side
            stop_on_failure: Stop the remaining members after a failure (serial only)
            per_member_timeout_seconds: Timeout budget for one member
            batch_size: Members per batch; defaults to all members when parallel, 1 when serial

        Returns:
            GroupExecutionPlan

        Raises:
            ValidationError: If no eligible member remains, or the timeout or
                batch size is not positive
        """
        if explicit_member_subset is None:
            member_ids = [member.id for member in group.members]
        else:
            member_ids = self._resolve_subset(group, explicit_member_subset)

        if not member_ids:
            raise ValidationError(
                f"Group '{group.name or group.id}' has no eligible members for this operation",
                error_code=ErrorCodes.NO_ELIGIBLE_MEMBERS,
            )

        if parallel and stop_on_failure:
            self.logger.debug("stop_on_failure has no effect on parallel group jobs; ignoring")

        if batch_size is None:
            batch_size = len(member_ids) if parallel else 1

        for field, value in (("per_member_timeout_seconds", per_member_timeout_seconds), ("batch_size", batch_size)):
            if value <= 0:
                raise ValidationError(
                    f"{field} must be positive, got {value}",
                    error_code=ErrorCodes.INVALID_GROUP_PLAN,
                )

        return GroupExecutionPlan(
            parallel=parallel,
            batch_size=batch_size,
            stop_on_failure=stop_on_failure,
            member_ids=tuple(member_ids),
            per_member_timeout_seconds=per_member_timeout_seconds,
        )

    def _resolve_subset(self, group: Group, identifiers: Iterable[str]) -> List[str]:
        resolved: List[str] = []
        for identifier in identifiers:
            member = next((m for m in group.members if m.matches(identifier)), None)
            if member is None:
                self.logger.warning(
                    f"'{identifier}' is not a member of group '{group.name or group.id}' and will be skipped"
                )
                continue
            if member.id not in resolved:
                resolved.append(member.id)
        return resolved
