"""Cox solver backends."""

from pysurvreg.cox.backends.cpu import CPUCoxBackend

__all__ = ["CPUCoxBackend"]
