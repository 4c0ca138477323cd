"""flaggy クライアント設定"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from .exceptions import FlaggyError, FlaggyErrorCodes

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class FlaggyConfig:
    """FlagClient の設定。

    sse_retry_delay / sse_max_retry_delay はミリ秒単位。
    server_url の末尾スラッシュは生成時に 1 つだけ取り除く。
    """

    server_url: str
    api_key: str
    flags: list[str] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    enable_streaming: bool = True
    sse_retry_delay: int = 1000
    sse_max_retry_delay: int = 30_000
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if not self.server_url:
            raise FlaggyError(FlaggyErrorCodes.CONFIG_ERROR, "server_url is required")
        if not self.api_key:
            raise FlaggyError(FlaggyErrorCodes.CONFIG_ERROR, "api_key is required")
        if self.server_url.endswith("/"):
            self.server_url = self.server_url[:-1]
        if self.sse_retry_delay < 0 or self.sse_max_retry_delay < 0:
            raise FlaggyError(
                FlaggyErrorCodes.CONFIG_ERROR,
                "sse retry delays must not be negative",
            )
        if self.sse_max_retry_delay < self.sse_retry_delay:
            raise FlaggyError(
                FlaggyErrorCodes.CONFIG_ERROR,
                f"sse_max_retry_delay ({self.sse_max_retry_delay}) must be >= "
                f"sse_retry_delay ({self.sse_retry_delay})",
            )

    @property
    def batch_url(self) -> str:
        return f"{self.server_url}/api/v1/evaluate/batch"

    @property
    def stream_url(self) -> str:
        return f"{self.server_url}/api/v1/stream"

    @classmethod
    def from_env(cls, prefix: str = "FLAGGY_") -> FlaggyConfig:
        """環境変数から設定を生成する。

        Args:
            prefix: 環境変数名のプレフィックス

        Returns:
            生成した FlaggyConfig
        """

        def env(name: str) -> str | None:
            return os.environ.get(f"{prefix}{name}")

        kwargs: dict[str, Any] = {
            "server_url": env("SERVER_URL") or "",
            "api_key": env("API_KEY") or "",
        }
        if (flags := env("FLAGS")) is not None:
            kwargs["flags"] = [f.strip() for f in flags.split(",") if f.strip()]
        if (streaming := env("ENABLE_STREAMING")) is not None:
            kwargs["enable_streaming"] = streaming.strip().lower() in _TRUTHY
        try:
            if (delay := env("SSE_RETRY_DELAY")) is not None:
                kwargs["sse_retry_delay"] = int(delay)
            if (max_delay := env("SSE_MAX_RETRY_DELAY")) is not None:
                kwargs["sse_max_retry_delay"] = int(max_delay)
            if (timeout := env("TIMEOUT_SECONDS")) is not None:
                kwargs["timeout_seconds"] = float(timeout)
        except ValueError as e:
            raise FlaggyError(
                code=FlaggyErrorCodes.CONFIG_ERROR,
                message=f"Invalid numeric config value: {e}",
                cause=e,
            ) from e
        return cls(**kwargs)
