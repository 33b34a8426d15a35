"""r/wallstreetbets hype score from Reddit's public search listing."""

from __future__ import annotations

from typing import Any

from api_client.market.base import HTTPProvider

MAX_POSTS = 25
MAX_HYPE = 10.0


class RedditClient(HTTPProvider):
    name = "reddit"

    async def get_hype(self, symbol: str) -> float:
        """Mean ``upvote_ratio * score`` of today's posts mentioning *symbol*, scaled to 0..10."""
        data = await self._get_json(
            f"{self._config.reddit_base_url}/r/wallstreetbets/search.json",
            params={"q": symbol, "restrict_sr": 1, "t": "day", "limit": MAX_POSTS},
        )
        return self._parse(_hype, data)


def _hype(data: Any) -> float:
    children = data["data"]["children"][:MAX_POSTS]
    if not children:
        return 0.0

    total = 0.0
    for child in children:
        post = child.get("data") or {}
        total += float(post.get("upvote_ratio") or 0) * float(post.get("score") or 0)
    return min(total / len(children) / 100, MAX_HYPE)
