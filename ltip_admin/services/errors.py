from __future__ import annotations

from typing import Any


class LedgerError(ValueError):
    """Base for every rejected ledger operation.

    Subclasses carry a stable ``code`` and HTTP status so routers can translate
    them without inspecting messages. ``details`` holds the numeric shortfall
    an operator needs to correct the request.
    """

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404


class InsufficientPoolCapacity(LedgerError):
    code = "insufficient_pool_capacity"
    status_code = 409

    def __init__(self, *, requested: int, available: int, pool_id=None) -> None:
        shortfall = requested - available
        super().__init__(
            f"Pool has {available} shares available; {requested} requested (short by {shortfall})",
            requested=requested,
            available=available,
            shortfall=shortfall,
            pool_id=str(pool_id) if pool_id else None,
        )


class InsufficientPlanCapacity(LedgerError):
    code = "insufficient_plan_capacity"
    status_code = 409

    def __init__(self, *, requested: int, available: int, plan_id=None) -> None:
        shortfall = requested - available
        super().__init__(
            f"Plan has {available} shares available; {requested} requested (short by {shortfall})",
            requested=requested,
            available=available,
            shortfall=shortfall,
            plan_id=str(plan_id) if plan_id else None,
        )


class AccelerationNotApplicable(LedgerError):
    code = "acceleration_not_applicable"
    status_code = 409

    def __init__(self, *, grant_id, open_shares: int, percentage) -> None:
        super().__init__(
            f"Accelerating {percentage}% of {open_shares} open shares moves nothing forward",
            grant_id=str(grant_id),
            open_shares=open_shares,
            percentage=str(percentage),
        )


class BelowConsumedFloor(LedgerError):
    code = "below_consumed_floor"
    status_code = 409

    def __init__(self, *, requested: int, floor: int, resource: str) -> None:
        super().__init__(
            f"Cannot resize {resource} to {requested} shares; {floor} already consumed",
            requested=requested,
            floor=floor,
            shortfall=floor - requested,
        )


class PoolInUse(LedgerError):
    code = "pool_in_use"
    status_code = 409

    def __init__(self, *, pool_id, plan_count: int) -> None:
        super().__init__(
            f"Pool is referenced by {plan_count} plan(s)",
            pool_id=str(pool_id),
            plan_count=plan_count,
        )


class PlanInUse(LedgerError):
    code = "plan_in_use"
    status_code = 409

    def __init__(self, *, plan_id, grant_count: int) -> None:
        super().__init__(
            f"Plan is referenced by {grant_count} grant(s)",
            plan_id=str(plan_id),
            grant_count=grant_count,
        )


class GrantHasSettledEvents(LedgerError):
    code = "grant_has_settled_events"
    status_code = 409

    def __init__(self, *, grant_id, settled_events: int) -> None:
        super().__init__(
            f"Grant has {settled_events} settled vesting event(s)",
            grant_id=str(grant_id),
            settled_events=settled_events,
        )


class ContractNotSigned(LedgerError):
    code = "contract_not_signed"
    status_code = 409

    def __init__(self, *, grant_id) -> None:
        super().__init__(
            "Grant contract has not been accepted by the employee",
            grant_id=str(grant_id),
        )


class PerformanceNotConfirmed(LedgerError):
    code = "performance_not_confirmed"
    status_code = 409

    def __init__(self, message: str | None = None, *, event_id, required_metric_ids, **details: Any) -> None:
        super().__init__(
            message or "Performance metrics must be confirmed before vesting",
            event_id=str(event_id),
            required_metric_ids=sorted(str(mid) for mid in required_metric_ids),
            **details,
        )


class IncompleteMetricConfirmation(PerformanceNotConfirmed):
    code = "incomplete_metric_confirmation"

    def __init__(self, *, event_id, required_metric_ids, missing_metric_ids) -> None:
        missing = sorted(str(mid) for mid in missing_metric_ids)
        super().__init__(
            f"{len(missing)} performance metric(s) not confirmed",
            event_id=event_id,
            required_metric_ids=required_metric_ids,
            missing_metric_ids=missing,
        )


class InvalidEventTransition(LedgerError):
    code = "invalid_event_transition"
    status_code = 409

    def __init__(self, *, event_id, current: str, target: str) -> None:
        super().__init__(
            f"Vesting event cannot move from {current} to {target}",
            event_id=str(event_id),
            current_status=current,
            target_status=target,
        )


class ExerciseNotApplicable(LedgerError):
    code = "exercise_not_applicable"
    status_code = 409

    def __init__(self, *, grant_id) -> None:
        super().__init__("Grant carries no exercise price", grant_id=str(grant_id))


class ExerciseRequired(LedgerError):
    code = "exercise_required"
    status_code = 409

    def __init__(self, *, grant_id) -> None:
        super().__init__(
            "Grant requires exercise; vested shares cannot be transferred directly",
            grant_id=str(grant_id),
        )


class SettlementProfileIncomplete(LedgerError):
    code = "settlement_profile_incomplete"
    status_code = 409

    def __init__(self, *, employee_id, missing_fields: list[str]) -> None:
        super().__init__(
            "Settlement profile is missing required account identifiers",
            employee_id=str(employee_id),
            missing_fields=missing_fields,
        )


class SettlementProfileUnverified(LedgerError):
    code = "settlement_profile_unverified"
    status_code = 409

    def __init__(self, *, employee_id, verification_status: str) -> None:
        super().__init__(
            f"Settlement profile is {verification_status}, not verified",
            employee_id=str(employee_id),
            verification_status=verification_status,
        )


class PortfolioAlreadyExists(LedgerError):
    code = "portfolio_already_exists"
    status_code = 409

    def __init__(self, *, portfolio_type: str, portfolio_id) -> None:
        super().__init__(
            f"A {portfolio_type} portfolio already exists",
            portfolio_type=portfolio_type,
            portfolio_id=str(portfolio_id),
        )


class PortfolioNotFound(LedgerError):
    code = "portfolio_not_found"
    status_code = 409

    def __init__(self, *, portfolio_type: str, employee_id=None) -> None:
        super().__init__(
            f"No {portfolio_type} portfolio found",
            portfolio_type=portfolio_type,
            employee_id=str(employee_id) if employee_id else None,
        )


class InsufficientSourceBalance(LedgerError):
    code = "insufficient_source_balance"
    status_code = 409

    def __init__(self, *, requested: int, available: int, portfolio_id) -> None:
        shortfall = requested - available
        super().__init__(
            f"Source portfolio has {available} shares available; {requested} requested (short by {shortfall})",
            requested=requested,
            available=available,
            shortfall=shortfall,
            portfolio_id=str(portfolio_id),
        )


class DestinationUpdateFailed(LedgerError):
    code = "destination_update_failed"
    status_code = 502

    def __init__(self, *, event_id, source_restored: bool, steps: list[str]) -> None:
        super().__init__(
            "Destination portfolio update failed; source balances were restored"
            if source_restored
            else "Destination portfolio update failed and the source could not be restored",
            event_id=str(event_id),
            source_restored=source_restored,
            steps=steps,
        )


class TransferInProgress(LedgerError):
    code = "transfer_in_progress"
    status_code = 409

    def __init__(self, *, event_id, transfer_id, transfer_status: str) -> None:
        super().__init__(
            f"Vesting event already has a {transfer_status} share transfer",
            event_id=str(event_id),
            transfer_id=str(transfer_id),
            transfer_status=transfer_status,
        )


__all__ = [
    "AccelerationNotApplicable",
    "BelowConsumedFloor",
    "ContractNotSigned",
    "DestinationUpdateFailed",
    "ExerciseNotApplicable",
    "ExerciseRequired",
    "GrantHasSettledEvents",
    "IncompleteMetricConfirmation",
    "InsufficientPlanCapacity",
    "InsufficientPoolCapacity",
    "InsufficientSourceBalance",
    "InvalidEventTransition",
    "LedgerError",
    "NotFound",
    "PerformanceNotConfirmed",
    "PlanInUse",
    "PoolInUse",
    "PortfolioAlreadyExists",
    "PortfolioNotFound",
    "SettlementProfileIncomplete",
    "SettlementProfileUnverified",
    "TransferInProgress",
]
