from ltip_admin.models.audit_log import AuditLog
from ltip_admin.models.grant import Grant
from ltip_admin.models.incentive_plan import IncentivePlan
from ltip_admin.models.ltip_pool import LtipPool
from ltip_admin.models.performance_metric import GrantPerformanceMetric, PerformanceMetric
from ltip_admin.models.portfolio import Portfolio
from ltip_admin.models.settlement_profile import SettlementProfile
from ltip_admin.models.share_transfer import ShareTransfer
from ltip_admin.models.vesting_event import VestingEvent
from ltip_admin.models.vesting_schedule import VestingMilestone, VestingSchedule

__all__ = [
    "AuditLog",
    "Grant",
    "GrantPerformanceMetric",
    "IncentivePlan",
    "LtipPool",
    "PerformanceMetric",
    "Portfolio",
    "SettlementProfile",
    "ShareTransfer",
    "VestingEvent",
    "VestingMilestone",
    "VestingSchedule",
]
