"""系统配置管理"""

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """系统配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DATAZONES_",
        case_sensitive=False
    )

    # 自动选择系列
    max_auto_series: int = 20
    schema_poll_max_attempts: int = 10
    schema_poll_interval_ms: int = 16

    # 会话限制
    max_sessions: int = 200

    # 服务器配置
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = True

    # 日志配置
    log_level: str = "INFO"
    log_file: Path = Path("./logs/app.log")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # 确保目录存在
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

    @property
    def schema_poll_budget_seconds(self) -> float:
        """等待透视结果的总时长（秒）"""
        return self.schema_poll_max_attempts * self.schema_poll_interval_ms / 1000


# 全局配置实例
settings = Settings()
