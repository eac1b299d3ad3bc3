"""Bundle selection for pricing requests."""

from .bundle_selector import BundleSelector

__all__ = ['BundleSelector']
