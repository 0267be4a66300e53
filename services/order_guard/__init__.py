from .duplicate_guard import DuplicateGuard, GuardEntry

__all__ = ["DuplicateGuard", "GuardEntry"]
