"""Reaper 모듈 - 만료된 claim 회수"""

from reaper.main import Reaper
from reaper.model.reaper import ReaperConfig

__all__ = ["Reaper", "ReaperConfig"]
