"""Ballastサーバーの設定管理。"""

from pathlib import Path

from pydantic_settings import BaseSettings

from ballast.schema.service import DEFAULT_SCHEMA_DIR


class ServerConfig(BaseSettings):
    """サーバー設定。環境変数から読み込み可能。"""

    model_config = {"env_prefix": "BALLAST_"}

    host: str = "0.0.0.0"
    port: int = 8000
    url_token: str = ""
    log_level: str = "INFO"

    # 組み込みスキーマデータ
    schema_dir: Path = DEFAULT_SCHEMA_DIR

    # 診断 (リクエストごとの指定とマージされる)
    ignore_checks: list[str] = []
    max_template_size: int = 1_000_000
