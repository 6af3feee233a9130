"""YAML 설정 로드"""

import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent / "config"

CONFIG_FILES = ("database", "worker", "dispatcher", "reaper", "admin", "logging")


def load_config(config_dir: str | Path | None = None, names: tuple[str, ...] | list[str] | None = None) -> dict:
    """
    설정 디렉토리의 YAML 파일들을 읽어 하나의 dict로 병합

    Args:
        config_dir: 설정 디렉토리 (기본: 프로젝트 루트의 config/)
        names: 읽을 파일 이름 (확장자 제외, 기본: CONFIG_FILES)

    Returns:
        최상위 키 기준으로 병합된 설정 (없는 파일은 건너뜀)
    """
    config_path = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    config: dict = {}

    for name in names or CONFIG_FILES:
        file_path = config_path / f"{name}.yaml"
        if not file_path.exists():
            logger.debug(f"Config file not found, skipped: {file_path}")
            continue

        with open(file_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {file_path}")
        config.update(data)

    return config
