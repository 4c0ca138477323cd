"""SSE ストリーム接続マネージャー"""

from __future__ import annotations

import asyncio
import codecs
from collections.abc import Callable
from enum import StrEnum

import httpx
import structlog

from .backoff import compute_backoff_delay
from .exceptions import FlaggyError, FlaggyErrorCodes, is_cancellation
from .models import StreamEvent
from .parser import EventStreamParser

logger = structlog.get_logger(__name__)

EventCallback = Callable[[StreamEvent], None]
ErrorCallback = Callable[[FlaggyError], None]


class ConnectionState(StrEnum):
    """ストリーム接続の状態。"""

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    STREAMING = "STREAMING"
    BACKOFF = "BACKOFF"
    DESTROYED = "DESTROYED"


class StreamManager:
    """1 本の SSE 接続を維持し、切断時は指数バックオフで再接続する。

    フラグやキャッシュについては何も知らない。パースしたイベントを
    on_event に、接続・読み込みエラーを on_error に到着順で渡す。
    destroy() 以降は二度と接続しない。

    Args:
        url: ストリームエンドポイントの URL
        api_key: Bearer トークンとして送信する API キー
        on_event: イベント受信コールバック
        on_error: エラー通知コールバック
        retry_delay: 初回再接続待機時間（ミリ秒）
        max_retry_delay: 再接続待機時間の上限（ミリ秒）
        http_client: 利用する httpx.AsyncClient。省略時は内部で生成して所有する
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        on_event: EventCallback,
        on_error: ErrorCallback,
        retry_delay: int = 1000,
        max_retry_delay: int = 30_000,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._on_event = on_event
        self._on_error = on_error
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay
        self._owns_http = http_client is None
        # 読み込みはサーバーからのプッシュ待ちなのでタイムアウトしない
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        self._state = ConnectionState.IDLE
        self._retry_count = 0
        self._task: asyncio.Task[None] | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._destroyed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def connect(self) -> None:
        """接続を (再) 確立する。呼び出し元はブロックしない。

        既存の接続があればキャンセルし、終了を待ってから新しい接続を開く。
        """
        if self._destroyed:
            return
        self._cancel_retry_timer()
        previous = self._task
        self._state = ConnectionState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run(previous))

    def destroy(self) -> None:
        """接続と再接続タイマーを破棄し、以後の connect() を無効にする。"""
        if self._destroyed:
            return
        self._destroyed = True
        self._state = ConnectionState.DESTROYED
        self._cancel_retry_timer()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("flaggy.stream.destroyed", url=self._url)

    async def aclose(self) -> None:
        """destroy() した上で接続タスクの終了を待ち、所有する HTTP クライアントを閉じる。"""
        self.destroy()
        task, self._task = self._task, None
        if task is not None:
            await asyncio.wait([task])
        if self._owns_http:
            await self._http.aclose()

    async def _run(self, previous: asyncio.Task[None] | None) -> None:
        if previous is not None and not previous.done():
            previous.cancel()
            await asyncio.wait([previous])
        try:
            await self._stream()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._destroyed:
                return
            if is_cancellation(e):
                # 中断を示すメッセージの通信エラーは通知しないが、再接続は行う
                logger.debug("flaggy.stream.aborted", url=self._url, error=str(e))
            else:
                self._report(e)
        if not self._destroyed and asyncio.current_task() is self._task:
            self._schedule_reconnect()

    def _report(self, e: Exception) -> None:
        error = (
            e
            if isinstance(e, FlaggyError)
            else FlaggyError(
                code=FlaggyErrorCodes.STREAM_ERROR,
                message=f"SSE stream failed: {e}",
                cause=e,
            )
        )
        logger.warning(
            "flaggy.stream.failed",
            url=self._url,
            error=str(error),
            retry_count=self._retry_count,
        )
        self._on_error(error)

    async def _stream(self) -> None:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "text/event-stream",
        }
        async with self._http.stream("GET", self._url, headers=headers) as response:
            if not response.is_success:
                raise FlaggyError(
                    code=FlaggyErrorCodes.STREAM_ERROR,
                    message=f"SSE connection failed: {response.status_code}",
                    status_code=response.status_code,
                    reason_phrase=response.reason_phrase,
                )
            self._retry_count = 0
            self._state = ConnectionState.STREAMING
            logger.info("flaggy.stream.connected", url=self._url)

            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            parser = EventStreamParser()
            async for chunk in response.aiter_bytes():
                for event in parser.feed(decoder.decode(chunk)):
                    self._on_event(event)
            for event in parser.feed(decoder.decode(b"", final=True)):
                self._on_event(event)
        logger.info("flaggy.stream.closed", url=self._url)

    def _schedule_reconnect(self) -> None:
        delay_ms = compute_backoff_delay(
            self._retry_count, self._retry_delay, self._max_retry_delay
        )
        self._retry_count += 1
        self._state = ConnectionState.BACKOFF
        logger.info(
            "flaggy.stream.reconnect_scheduled",
            url=self._url,
            delay_ms=round(delay_ms),
            retry_count=self._retry_count,
        )
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay_ms / 1000, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self.connect()

    def _cancel_retry_timer(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
