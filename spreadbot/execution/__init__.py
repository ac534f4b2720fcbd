from .manager import ExecutionManager, ExecutionResult, classify_error, round_to_tick, share_count

__all__ = ["ExecutionManager", "ExecutionResult", "classify_error", "round_to_tick", "share_count"]
