from .simulation_ledger import SimulationLedger

__all__ = ("SimulationLedger",)
