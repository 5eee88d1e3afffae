"""Lead Allocation Engine - Data Models"""
from .db_models import (
    # Enums
    AccountStatus, Lane, TrackingStatus, SourceType, BatchStatus,
    SuppressionType, ActorType, SettingDataType,
    # Tables
    AccountDB, AccountSettingsDB, SystemDefaultDB, DistressSignalDB,
    OwnerContactDB, PropertyDB, TrackingDB, TrackingEventDB,
    WeeklyBatchDB, BatchRecordDB, WalletTransactionDB, SkipTraceDB,
)
from .allocation_models import (
    BuyBox, LaneCadence, CadencePolicy, AccountConfig,
    SignalEntry, SignalScore, CycleReport, Selection, SelectedRecord,
    SkipTraceEstimate, TraceResult, ExportRecord, ExecutionResult, WalletView,
)

__all__ = [
    "AccountStatus", "Lane", "TrackingStatus", "SourceType", "BatchStatus",
    "SuppressionType", "ActorType", "SettingDataType",
    "AccountDB", "AccountSettingsDB", "SystemDefaultDB", "DistressSignalDB",
    "OwnerContactDB", "PropertyDB", "TrackingDB", "TrackingEventDB",
    "WeeklyBatchDB", "BatchRecordDB", "WalletTransactionDB", "SkipTraceDB",
    "BuyBox", "LaneCadence", "CadencePolicy", "AccountConfig",
    "SignalEntry", "SignalScore", "CycleReport", "Selection", "SelectedRecord",
    "SkipTraceEstimate", "TraceResult", "ExportRecord", "ExecutionResult", "WalletView",
]
