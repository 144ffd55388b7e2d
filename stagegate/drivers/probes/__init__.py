"""Readiness probe drivers."""

from stagegate.drivers.probes.command import CommandProbe
from stagegate.drivers.probes.http import HttpProbe
from stagegate.drivers.probes.tcp import TcpProbe

__all__ = ["CommandProbe", "HttpProbe", "TcpProbe"]
