"""FlagClient 実装"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from typing import Any, TypeVar, cast

import httpx
import structlog

from .config import FlaggyConfig
from .exceptions import FlaggyError, FlaggyErrorCodes
from .http_client import BatchEvaluator
from .models import (
    ABSENT,
    BatchEvaluateResponse,
    ClientState,
    EvaluationContext,
    FlagCache,
    FlagValue,
    StreamEvent,
)
from .stream import StreamManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")

EVENT_CHANGE = "change"
EVENT_READY = "ready"
EVENT_ERROR = "error"

# サーバーが接続直後に送る確認イベント。再評価の対象外
CONNECTED_EVENT = "connected"


class _Subscription:
    """on() で登録されたリスナー 1 件分のハンドル。"""

    __slots__ = ("listener",)

    def __init__(self, listener: Callable[..., Any]) -> None:
        self.listener = listener


def _same_value(old: Any, new: Any) -> bool:
    """厳密等価で比較する。

    構造化オブジェクトは同一参照のときのみ等しいとみなす。内容が同じでも
    別オブジェクトなら変更として扱う。数値は int と float を区別せず値で
    比較するが、bool は数値と等しいとみなさない。
    """
    if isinstance(old, (dict, list)) or isinstance(new, (dict, list)):
        return old is new
    if isinstance(old, bool) or isinstance(new, bool):
        return type(old) is type(new) and old == new
    if isinstance(old, (int, float)) and isinstance(new, (int, float)):
        return old == new
    return type(old) is type(new) and old == new


class FlagClient:
    """フラグ値のキャッシュを保持し、評価サーバーとの同期を担うクライアント。

    initialize() で全フラグを一括評価してキャッシュを構築し、以後は
    get_flag() で同期的に値を読む。ストリーミングが有効な場合は SSE で
    変更を受け取るたびに一括再評価し、差分を change イベントで通知する。

    Usage:
        client = FlagClient(server_url="https://flaggy.example.com",
                            api_key="flg_xxx", flags=["dark_mode"])
        client.on("change", lambda key, value: ...)
        await client.initialize()
        if client.get_flag("dark_mode", False):
            ...
        await client.aclose()

    initialize() は 1 回だけ呼ぶこと（二重呼び出しは防止しない）。
    """

    def __init__(
        self,
        config: FlaggyConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        stream_http_client: httpx.AsyncClient | None = None,
        **options: Any,
    ) -> None:
        if config is None:
            config = FlaggyConfig(**options)
        elif options:
            raise FlaggyError(
                FlaggyErrorCodes.CONFIG_ERROR,
                "pass either a FlaggyConfig or keyword options, not both",
            )
        self._config = config
        self._flags = list(config.flags)
        self._context: EvaluationContext = config.context
        self._cache: FlagCache = {}
        self._state = ClientState.UNINITIALIZED
        self._error: FlaggyError | None = None
        self._evaluator = BatchEvaluator(config, http_client)
        self._stream: StreamManager | None = None
        if config.enable_streaming:
            self._stream = StreamManager(
                url=config.stream_url,
                api_key=config.api_key,
                on_event=self._handle_stream_event,
                on_error=self._handle_stream_error,
                retry_delay=config.sse_retry_delay,
                max_retry_delay=config.sse_max_retry_delay,
                http_client=stream_http_client,
            )
        self._context_task: asyncio.Task[BatchEvaluateResponse] | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._listeners: dict[str, list[_Subscription]] = {
            EVENT_CHANGE: [],
            EVENT_READY: [],
            EVENT_ERROR: [],
        }
        self._destroyed = False
        self._log = logger.bind(server_url=config.server_url)

    async def __aenter__(self) -> FlagClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def ready(self) -> bool:
        return self._state is ClientState.READY

    @property
    def error(self) -> FlaggyError | None:
        return self._error

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def context(self) -> EvaluationContext:
        return self._context

    @property
    def flags(self) -> list[str]:
        return list(self._flags)

    @property
    def stream(self) -> StreamManager | None:
        return self._stream

    def all_flags(self) -> FlagCache:
        """現在のキャッシュのコピーを返す。"""
        return dict(self._cache)

    async def initialize(self) -> None:
        """全フラグを一括評価してキャッシュを構築し、ストリーミングを開始する。

        失敗しても例外は送出せず、error プロパティと error イベントで通知する。
        """
        if self._destroyed:
            return
        try:
            response = await self._evaluator.evaluate(self._flags, self._context)
        except FlaggyError as e:
            self._state = ClientState.ERRORED
            self._error = e
            self._log.warning("flaggy.client.initialize_failed", error=str(e))
            self._emit(EVENT_ERROR, e)
        else:
            changes = self._swap_cache(response.to_cache())
            self._state = ClientState.READY
            self._error = None
            self._log.info("flaggy.client.ready", flag_count=len(self._cache))
            self._emit_changes(changes)
            self._emit(EVENT_READY)

        if self._stream is not None:
            self._stream.connect()

    def get_flag(self, key: str, default: T) -> T:
        """キャッシュ済みのフラグ値を返す。未準備またはキーが無ければ default を返す。"""
        if self._state is not ClientState.READY or key not in self._cache:
            return default
        return cast(T, self._cache[key])

    async def set_context(self, context: EvaluationContext) -> None:
        """評価コンテキストを差し替えて全フラグを再評価する。

        実行中の前回リクエストはキャンセルされ、その結果は破棄される。
        """
        if self._destroyed:
            return
        self._context = context
        self._cancel_refresh()
        previous = self._context_task
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.ensure_future(self._evaluator.evaluate(self._flags, context))
        self._context_task = task

        try:
            response = await task
        except asyncio.CancelledError:
            if task is not self._context_task:
                # 新しい set_context() か destroy() に置き換えられた
                return
            raise
        except FlaggyError as e:
            if task is not self._context_task:
                return
            self._context_task = None
            self._error = e
            self._log.warning("flaggy.client.set_context_failed", error=str(e))
            self._emit(EVENT_ERROR, e)
            return

        if task is not self._context_task:
            return
        self._context_task = None
        self._emit_changes(self._swap_cache(response.to_cache()))

    def on(self, event: str, listener: Callable[..., Any]) -> Callable[[], None]:
        """イベントリスナーを登録し、登録解除用の関数を返す。

        Args:
            event: "change" / "ready" / "error" のいずれか
            listener: change は (key, value)、ready は引数なし、error は (error) で呼ばれる

        Returns:
            呼び出すとこのリスナーだけを解除する関数
        """
        if event not in self._listeners:
            raise FlaggyError(
                FlaggyErrorCodes.INVALID_EVENT,
                f"unknown event: {event!r}",
            )
        subscription = _Subscription(listener)
        self._listeners[event].append(subscription)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event].remove(subscription)

        return unsubscribe

    def destroy(self) -> None:
        """ストリームを停止し、実行中のリクエストをキャンセルし、全リスナーを解除する。"""
        self._destroyed = True
        if self._stream is not None:
            self._stream.destroy()
        for task in (self._context_task, self._refresh_task):
            if task is not None and not task.done():
                task.cancel()
        self._context_task = None
        self._refresh_task = None
        for subscriptions in self._listeners.values():
            subscriptions.clear()

    async def aclose(self) -> None:
        """destroy() した上でタスクの終了を待ち、HTTP クライアントを閉じる。"""
        pending = [t for t in (self._context_task, self._refresh_task) if t is not None]
        self.destroy()
        if pending:
            await asyncio.wait(pending)
        if self._stream is not None:
            await self._stream.aclose()
        await self._evaluator.aclose()

    def _handle_stream_event(self, event: StreamEvent) -> None:
        if event.type == CONNECTED_EVENT or self._destroyed:
            return
        self._log.debug("flaggy.client.stream_event", type=event.type, key=event.key)
        self._cancel_refresh()
        self._refresh_task = asyncio.ensure_future(self._refresh())

    def _handle_stream_error(self, error: FlaggyError) -> None:
        self._emit(EVENT_ERROR, error)

    async def _refresh(self) -> None:
        task = asyncio.current_task()
        try:
            response = await self._evaluator.evaluate(self._flags, self._context)
        except FlaggyError as e:
            # 直前のキャッシュを維持する
            self._log.warning("flaggy.client.refresh_failed", error=str(e))
            return
        if task is not self._refresh_task:
            return
        self._refresh_task = None
        self._emit_changes(self._swap_cache(response.to_cache()))

    def _cancel_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

    def _swap_cache(self, new_cache: FlagCache) -> list[tuple[str, FlagValue | object]]:
        """キャッシュを丸ごと差し替え、通知すべき差分を返す。"""
        old_cache = self._cache
        changes: list[tuple[str, FlagValue | object]] = [
            (key, value)
            for key, value in new_cache.items()
            if key not in old_cache or not _same_value(old_cache[key], value)
        ]
        changes.extend((key, ABSENT) for key in old_cache if key not in new_cache)
        self._cache = new_cache
        return changes

    def _emit_changes(self, changes: list[tuple[str, FlagValue | object]]) -> None:
        for key, value in changes:
            self._emit(EVENT_CHANGE, key, value)

    def _emit(self, event: str, *args: Any) -> None:
        for subscription in tuple(self._listeners[event]):
            try:
                subscription.listener(*args)
            except Exception:
                self._log.exception("flaggy.client.listener_failed", event_name=event)
