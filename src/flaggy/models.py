"""flaggy データモデル"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .exceptions import FlaggyError, FlaggyErrorCodes

FlagValue = bool | str | int | float | dict[str, Any]
"""フラグ値。bool / str / 数値 / 構造化オブジェクトのいずれか。"""

EvaluationContext = dict[str, Any]
"""評価コンテキスト。サーバーへそのまま送信され、クライアントは中身を解釈しない。"""

FlagCache = dict[str, FlagValue]


class _Absent:
    """キャッシュから消えたフラグを表すセンチネル。"""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


class ClientState(StrEnum):
    """FlagClient の状態。"""

    UNINITIALIZED = "UNINITIALIZED"
    READY = "READY"
    ERRORED = "ERRORED"


@dataclass
class EvaluatedFlag:
    """バッチ評価レスポンスの 1 フラグ分の結果。"""

    flag_key: str
    value: FlagValue
    match: bool = False
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvaluatedFlag:
        """API レスポンス辞書から EvaluatedFlag を生成する。"""
        if not isinstance(data, dict) or "flag_key" not in data:
            raise FlaggyError(
                code=FlaggyErrorCodes.INVALID_RESPONSE,
                message=f"evaluation result has no flag_key: {data!r}",
            )
        if not isinstance(data["flag_key"], str):
            raise FlaggyError(
                code=FlaggyErrorCodes.INVALID_RESPONSE,
                message=f"flag_key must be a string: {data['flag_key']!r}",
            )
        return cls(
            flag_key=data["flag_key"],
            value=data.get("value"),
            match=data.get("match", False),
            reason=data.get("reason", ""),
        )


@dataclass
class BatchEvaluateResponse:
    """POST /api/v1/evaluate/batch のレスポンス。"""

    results: list[EvaluatedFlag] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchEvaluateResponse:
        if not isinstance(data, dict):
            raise FlaggyError(
                code=FlaggyErrorCodes.INVALID_RESPONSE,
                message=f"batch response must be an object: {type(data).__name__}",
            )
        return cls(results=[EvaluatedFlag.from_dict(r) for r in data.get("results", [])])

    def to_cache(self) -> FlagCache:
        """フラグキー -> 値のマッピングを新規に構築する。"""
        return {result.flag_key: result.value for result in self.results}


@dataclass(frozen=True)
class StreamEvent:
    """ストリームから 1 フレーム分パースしたイベント。

    ``data`` はデコード済みペイロード全体。フレームの ``event:`` 行で
    型が指定された場合、ペイロード内の ``type`` はその値で上書きされる。
    """

    type: str
    key: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_frame(cls, event_type: str, payload: dict[str, Any]) -> StreamEvent:
        data = dict(payload)
        if event_type:
            data["type"] = event_type
        return cls(
            type=str(data.get("type", "")),
            key=str(data.get("key", "")),
            data=data,
        )
