"""Kernel: domain model, ports and the orchestration engine.

The kernel depends only on its own modules and third-party libraries; concrete
adapters live in ``stagegate.drivers`` and are injected by callers.
"""
