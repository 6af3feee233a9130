"""공통 유틸리티 (설정, 로깅)"""

from common.config import load_config
from common.logging import setup_logging

__all__ = ["load_config", "setup_logging"]
