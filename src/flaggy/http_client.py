"""バッチ評価 HTTP クライアント実装"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from .config import FlaggyConfig
from .exceptions import FlaggyError, FlaggyErrorCodes
from .models import BatchEvaluateResponse, EvaluationContext


class BatchEvaluator:
    """httpx を使って POST /api/v1/evaluate/batch を呼び出すクライアント。"""

    def __init__(
        self,
        config: FlaggyConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        }

    def _handle_error(self, resp: httpx.Response) -> None:
        if not resp.is_success:
            raise FlaggyError(
                code=FlaggyErrorCodes.HTTP_ERROR,
                message=f"Flaggy API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                reason_phrase=resp.reason_phrase,
            )

    async def evaluate(
        self, flags: Sequence[str], context: EvaluationContext
    ) -> BatchEvaluateResponse:
        """フラグ群をまとめて評価する。

        キャンセルされた場合は asyncio.CancelledError がそのまま伝播する。
        """
        body = {"flags": list(flags), "context": context}
        try:
            resp = await self._client.post(
                self._config.batch_url, json=body, headers=self._headers
            )
        except httpx.HTTPError as e:
            raise FlaggyError(
                code=FlaggyErrorCodes.CONNECTION_ERROR,
                message=f"Failed to evaluate flags: {e}",
                cause=e,
            ) from e
        self._handle_error(resp)
        try:
            data: dict[str, Any] = resp.json()
            return BatchEvaluateResponse.from_dict(data)
        except FlaggyError:
            raise
        except (ValueError, TypeError, AttributeError) as e:
            raise FlaggyError(
                code=FlaggyErrorCodes.INVALID_RESPONSE,
                message=f"Invalid batch evaluation response: {e}",
                cause=e,
            ) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
