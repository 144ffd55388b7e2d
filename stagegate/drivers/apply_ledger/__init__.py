from stagegate.drivers.apply_ledger.file import FileApplyLedger
from stagegate.drivers.apply_ledger.memory import InMemoryApplyLedger

__all__ = ["FileApplyLedger", "InMemoryApplyLedger"]
