from .manager import SettlementManager, SettlementResult
from .risk import RiskLedger

__all__ = ["RiskLedger", "SettlementManager", "SettlementResult"]
