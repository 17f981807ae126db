"""AI-assisted support conversation engine for storefront organizations."""

from .__version__ import __version__

__all__ = ["__version__"]
