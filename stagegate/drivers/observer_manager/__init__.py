from stagegate.drivers.observer_manager.local import LocalObserverManager

__all__ = ["LocalObserverManager"]
