"""
GUI Package for rc2docker
Qt worker threads that run Docker operations off the UI thread
"""

from .threads import BackupScheduler, BackupThread, ContainerOperationThread, ContainerStateBridge, StartupThread

__all__ = ['StartupThread', 'BackupThread', 'BackupScheduler', 'ContainerOperationThread', 'ContainerStateBridge']
