from .app import App, run_main
from .engine import SpreadEngine
from .supervisor import LoopSupervisor, RuntimeHealth

__all__ = ["App", "LoopSupervisor", "RuntimeHealth", "SpreadEngine", "run_main"]
