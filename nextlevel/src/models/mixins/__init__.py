"""
Model mixins for shared functionality across entities.
"""

from nextlevel.src.models.mixins.guid import GuidMixin, UUIDType

__all__ = ["GuidMixin", "UUIDType"]
