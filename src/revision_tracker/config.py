from typing import Annotated, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.types import NoDecode


DEFAULT_DB_PATH = ".data/revision.sqlite3"
DEFAULT_GRACE_DAYS = 14


def _split_csv(raw: object, *, lower: bool = False) -> tuple[str, ...] | object:
    """Turn a comma separated string (or sequence) into a trimmed, deduplicated tuple."""

    if raw is None:
        candidates: list[str] = []
    elif isinstance(raw, str):
        candidates = raw.split(",")
    else:
        try:
            candidates = list(raw)  # type: ignore[call-overload]
        except TypeError:
            return raw
    normalised: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        trimmed = candidate.strip()
        if lower:
            trimmed = trimmed.lower()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        normalised.append(trimmed)
    return tuple(normalised)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数から読み込まれるアプリ設定クラス。
    - store_backend: 永続化バックエンド（sqlite / firestore）
    - interval_policy: 次回復習日の算出方式（週数指定 / 解答回数テーブル）
    - creation_policy: 登録直後の状態（即時出題 / 猶予期間つき）
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level / ルートロガーのログレベル",
    )

    # --- 永続化設定 ---
    store_backend: Literal["sqlite", "firestore"] = Field(
        default="sqlite",
        description="Persistence backend for questions / 問題データの永続化先",
    )
    revision_db_path: str = Field(
        default=DEFAULT_DB_PATH,
        description="Path to SQLite database / SQLite DBパス",
        validation_alias=AliasChoices("revision_db_path", "database_path"),
    )
    sqlite_busy_timeout_sec: float = Field(
        default=10.0,
        description="Seconds to wait for a locked SQLite database / ロック待ちの上限（秒）",
    )
    firestore_project_id: str | None = Field(
        default=None,
        description="Firestore project id / Firestore のプロジェクトID",
    )
    firestore_emulator_host: str | None = Field(
        default=None,
        description="Firestore emulator host (host:port) / Firestore エミュレータの接続先",
    )
    gcp_project_id: str | None = Field(
        default=None,
        description="Fallback GCP project id / 既定の GCP プロジェクトID",
        validation_alias=AliasChoices("gcp_project_id", "google_cloud_project"),
    )

    # --- スケジューリング方針 ---
    interval_policy: Literal["weeks", "solve_count"] = Field(
        default="weeks",
        description=(
            "How the next review date is chosen on mark-solved / "
            "解答済み登録時の次回復習日の決め方"
        ),
    )
    creation_policy: Literal["due_immediately", "grace_period"] = Field(
        default="due_immediately",
        description=(
            "Initial schedule of newly created questions / "
            "新規登録した問題の初期スケジュール"
        ),
    )
    default_grace_days: int = Field(
        default=DEFAULT_GRACE_DAYS,
        description="Grace period in days for grace_period creation / 猶予期間（日）",
    )
    allowed_source_domains: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("leetcode.com",),
        description=(
            "Domain markers a source URL must contain (comma separated) / "
            "問題URLに含まれている必要があるドメイン"
        ),
    )

    # --- HTTP ---
    allowed_cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description=(
            "Comma separated CORS origins / CORS で許可するオリジンのカンマ区切り一覧"
        ),
        validation_alias=AliasChoices("allowed_cors_origins", "cors_allowed_origins"),
    )
    sentry_dsn: str | None = Field(
        default=None, description="Sentry DSN (enable if set)"
    )

    # Pydantic v2 settings config
    # - env_file: .env を読み込む
    # - extra: .env に存在する未使用キーを無視
    # - case_sensitive: 環境変数キーの大小文字を区別しない
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("allowed_source_domains", mode="before")
    @classmethod
    def _normalise_source_domains(cls, raw_domains: object) -> tuple[str, ...] | object:
        """Lower-case and deduplicate the accepted source domain markers.

        URL 判定は大文字小文字を区別しないため、ここで小文字に揃えておく。
        """

        return _split_csv(raw_domains, lower=True)

    @field_validator("allowed_source_domains", mode="after")
    @classmethod
    def _require_source_domain(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("ALLOWED_SOURCE_DOMAINS must name at least one domain")
        return value

    @field_validator("allowed_cors_origins", mode="before")
    @classmethod
    def _normalise_allowed_cors_origins(
        cls, raw_origins: object
    ) -> tuple[str, ...] | object:  # pragma: no cover - pydantic handles typing
        """Convert environment input into a deduplicated tuple of origins."""

        return _split_csv(raw_origins)

    @field_validator("default_grace_days", mode="after")
    @classmethod
    def _validate_grace_days(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("DEFAULT_GRACE_DAYS must be a positive number of days")
        return value

    @field_validator("sqlite_busy_timeout_sec", mode="after")
    @classmethod
    def _validate_busy_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_SEC must be positive")
        return value

    @field_validator("log_level", mode="after")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        return (value or "INFO").strip().upper()


settings = Settings()
