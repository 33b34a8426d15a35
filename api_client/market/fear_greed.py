"""Market Fear & Greed index: CNN first, alternative.me as fallback."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from api_client.market.base import HTTPProvider, MarketDataError
from models.market import FearGreed, fear_greed_label

logger = logging.getLogger(__name__)


class FearGreedClient(HTTPProvider):
    name = "fear_greed"

    async def get_index(self) -> FearGreed:
        """Raises ``MarketDataError`` only when both sources fail."""
        try:
            return await self._from_cnn()
        except MarketDataError as exc:
            logger.info("CNN Fear & Greed unavailable (%s), trying fallback", exc)
        return await self._from_alternative()

    async def _from_cnn(self) -> FearGreed:
        data = await self._get_json(self._config.fear_greed_url)
        return self._parse(self._cnn_index, data)

    def _cnn_index(self, data: Any) -> FearGreed:
        fng = data.get("fear_and_greed") if isinstance(data, dict) else None
        score = fng.get("score") if isinstance(fng, dict) else None
        if not isinstance(score, (int, float)):
            raise MarketDataError(self.name, "CNN payload has no score")
        value = max(0, min(100, round(score)))
        return FearGreed(value=value, label=fear_greed_label(score), timestamp=datetime.now(timezone.utc))

    async def _from_alternative(self) -> FearGreed:
        data = await self._get_json(self._config.fear_greed_fallback_url, params={"limit": 1})
        return self._parse(_alternative_index, data)


def _alternative_index(data: Any) -> FearGreed:
    entry = data["data"][0]
    value = int(entry["value"])
    timestamp = None
    if entry.get("timestamp"):
        timestamp = datetime.fromtimestamp(int(entry["timestamp"]), tz=timezone.utc)
    return FearGreed(
        value=max(0, min(100, value)),
        label=entry.get("value_classification") or fear_greed_label(value),
        timestamp=timestamp,
    )
