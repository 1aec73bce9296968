from limit_engine.engine.context import EngineConfig, EngineContext
from limit_engine.engine.coordinator import ExecutionCoordinator, ExecutionOutcome
from limit_engine.engine.engine import LimitOrderEngine
from limit_engine.engine.reconciler import Reconciler, Resolution
from limit_engine.engine.scheduler import Scheduler
from limit_engine.engine.trigger import TriggerDecision, observe, price_condition_met, should_trigger

__all__ = [
    "EngineConfig",
    "EngineContext",
    "ExecutionCoordinator",
    "ExecutionOutcome",
    "LimitOrderEngine",
    "Reconciler",
    "Resolution",
    "Scheduler",
    "TriggerDecision",
    "observe",
    "price_condition_met",
    "should_trigger",
]
