"""Reaper 모델"""

from reaper.model.reaper import ReaperConfig

__all__ = ["ReaperConfig"]
