"""Review queue module for rejected scene management.

This module provides file-based storage for scenes that exhausted their
retry budget, allowing human review.
"""

from clip_gate.review.queue import RejectedScene, ReviewQueue

__all__ = [
    "RejectedScene",
    "ReviewQueue",
]
