"""
Admin API 설정 모델
"""

from pydantic import BaseModel, Field


class CorsConfig(BaseModel):
    """CORS 설정"""
    origins: list[str] = Field(default_factory=lambda: ["*"])
    allow_credentials: bool = True
    allow_methods: list[str] = Field(default_factory=lambda: ["*"])
    allow_headers: list[str] = Field(default_factory=lambda: ["*"])


class AdminConfig(BaseModel):
    """Admin API 설정"""
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    database: str = Field(default="default", description="사용할 DB 이름 (database.yaml)")
    cors: CorsConfig = Field(default_factory=CorsConfig)
