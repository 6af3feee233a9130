"""Dispatcher 모듈 - 유휴 워커 대신 잡 claim"""

from dispatcher.main import Dispatcher
from dispatcher.model.dispatcher import DispatcherConfig

__all__ = [
    "Dispatcher",
    "DispatcherConfig",
]
