"""Infrastructure providers."""

from .base import Provider
from .ec2 import EC2Provider
from .memory import MemoryProvider

__all__ = ["Provider", "EC2Provider", "MemoryProvider"]
