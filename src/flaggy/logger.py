"""flaggy のログ出力設定"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

SDK_NAME = "flaggy"

# flaggy の level に関わらず WARNING 未満を出さないロガー
_NOISY_LOGGERS = ("httpx", "httpcore")


def add_sdk_name(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """出力元を識別する sdk フィールドを付与する。"""
    event_dict.setdefault("sdk", SDK_NAME)
    return event_dict


def configure_logging(level: str = "INFO", format: str = "json") -> structlog.stdlib.BoundLogger:
    """flaggy のログを構造化出力するよう structlog を設定する。

    ライブラリはインポート時にログ設定を行わないので、アプリケーションが
    必要なときに 1 回呼び出す。level は flaggy 配下のロガーにだけ適用し、
    httpx / httpcore は WARNING 未満を出さない。

    Args:
        level: ログレベル ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        format: 出力形式 ("json" or "text")

    Returns:
        "flaggy" ロガーにバインドされた structlog.stdlib.BoundLogger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    logging.getLogger(SDK_NAME).setLevel(log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_sdk_name,
    ]
    if format == "json":
        processors += [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.stdlib.get_logger(SDK_NAME)
