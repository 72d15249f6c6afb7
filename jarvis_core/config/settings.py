"""配置管理模块。

支持从初始化参数、环境变量、.env 以及 config.yaml 加载配置，
优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("JARVIS_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Agent 服务端 ----
    agent_server_url: str = Field(
        default="http://localhost:3001",
        description="外部 Agent 服务的基础 URL",
    )
    agent_chat_path: str = Field(default="/api/chat", description="流式对话端点路径")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 连接/写入超时时间（秒）")
    stream_read_timeout: Optional[float] = Field(
        default=300.0,
        description="两次数据块之间允许的最长等待时间（秒），None 表示不限制",
    )
    agent_connectors: List[str] = Field(
        default_factory=list,
        description="随请求发送的连接器列表，例如 gmail、google-calendar、github",
    )

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 会话 ----
    default_thread_title: str = Field(default="New conversation", description="新会话默认标题")
    auto_title_length: int = Field(default=50, ge=1, description="由首条消息生成标题时截取的长度")
    thread_title_limit: int = Field(default=80, ge=1, description="会话标题最大长度")
    list_threads_limit: int = Field(default=30, ge=1, description="会话列表默认条数")
    list_messages_limit: int = Field(default=100, ge=1, description="消息列表默认条数")
    persist_tool_messages: bool = Field(
        default=False,
        description="回合结束后是否把工具调用记录持久化为 tool 消息",
    )
    tool_match_strategy: Literal["first_running", "last_running"] = Field(
        default="first_running",
        description="同名工具且无 messageId 时的匹配策略",
    )

    # ---- 通知 ----
    notifications_enabled: bool = Field(default=False, description="用户是否开启紧急消息桌面通知")
    notification_body_limit: int = Field(default=180, ge=1, description="通知正文最大字符数")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("agent_server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("agent_server_url must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("agent_chat_path")
    @classmethod
    def validate_chat_path(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
