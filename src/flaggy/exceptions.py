"""flaggy ライブラリの例外型定義"""

from __future__ import annotations

import asyncio

import httpx

# 中断を示すメッセージ断片（トランスポート実装ごとに表現が異なる）
_CANCELLATION_MARKERS = ("cancelled", "canceled", "aborted", "operation was aborted")


class FlaggyError(Exception):
    """flaggy ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
        status_code: int | None = None,
        reason_phrase: str = "",
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class FlaggyErrorCodes:
    """FlaggyError のエラーコード定数。"""

    HTTP_ERROR: str = "HTTP_ERROR"
    CONNECTION_ERROR: str = "CONNECTION_ERROR"
    INVALID_RESPONSE: str = "INVALID_RESPONSE"
    STREAM_ERROR: str = "STREAM_ERROR"
    CONFIG_ERROR: str = "CONFIG_ERROR"
    INVALID_EVENT: str = "INVALID_EVENT"


def is_cancellation(exc: BaseException) -> bool:
    """中断を示す例外かを判定する。

    明示的なキャンセル例外に加え、読み込み中断をメッセージでしか
    表現しないトランスポートのエラーも中断として扱う。メッセージで
    判定したものは本物の通信断の可能性があるため、呼び出し側は通知を
    省くだけで再接続は止めないこと。
    """
    if isinstance(exc, (asyncio.CancelledError, httpx.StreamClosed)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _CANCELLATION_MARKERS)
