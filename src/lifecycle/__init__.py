"""
Lifecycle
Install-time pre-warming and activation-time generation GC.
"""

from .manager import InstallReport, LifecycleManager, LifecycleState

__all__ = ['InstallReport', 'LifecycleManager', 'LifecycleState']
