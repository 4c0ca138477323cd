"""text/event-stream のインクリメンタルパーサー"""

from __future__ import annotations

import json

import structlog

from .models import StreamEvent

logger = structlog.get_logger(__name__)


class EventStreamParser:
    """チャンク単位で受け取ったテキストからイベントフレームを組み立てる。

    フレーム境界がどのチャンク境界に来ても同じ結果になるよう、
    未完了の末尾行はバッファに保持して次の feed() に持ち越す。
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._event_type = ""
        self._data = ""

    def feed(self, text: str) -> list[StreamEvent]:
        """テキストを追加し、完成したイベントを到着順に返す。"""
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events: list[StreamEvent] = []
        for raw in lines:
            line = raw[:-1] if raw.endswith("\r") else raw
            if line.startswith("event:"):
                self._event_type = line[6:].strip()
            elif line.startswith("data:"):
                self._data = line[5:].strip()
            elif line == "":
                if self._data:
                    event = self._decode(self._event_type, self._data)
                    if event is not None:
                        events.append(event)
                self._event_type = ""
                self._data = ""
        return events

    @staticmethod
    def _decode(event_type: str, data: str) -> StreamEvent | None:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("flaggy.stream.malformed_frame", event_type=event_type)
            return None
        if not isinstance(payload, dict):
            logger.debug("flaggy.stream.non_object_frame", event_type=event_type)
            return None
        return StreamEvent.from_frame(event_type, payload)
