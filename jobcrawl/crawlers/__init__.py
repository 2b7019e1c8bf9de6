"""Session layer implementations for different transports."""

from .base import SessionProvider
from .static import StaticFetcher
from .stealth import StealthBrowser

__all__ = ['SessionProvider', 'StaticFetcher', 'StealthBrowser']
