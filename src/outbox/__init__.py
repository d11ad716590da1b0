"""
Outbox
Durable FIFO of mutating requests that failed while offline.
"""

from .queue import MutationQueue, QueuedMutation, ReplayReport

__all__ = ['MutationQueue', 'QueuedMutation', 'ReplayReport']
