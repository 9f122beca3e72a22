"""
Alephium full node REST interface.
"""
from typing import Optional

from aiohttp import ClientSession


async def _get_json(session: ClientSession, url: str, params=None, headers=None):
    async with session.get(url, params=params, headers=headers) as resp:
        try:
            body = await resp.json(content_type=None)
        except ValueError:
            body = None
        if resp.status != 200:
            detail = body.get("detail") if isinstance(body, dict) else None
            return {"error": detail or f"HTTP {resp.status}", "status": resp.status}
        if not isinstance(body, dict):
            return {"error": "invalid response body", "status": resp.status}
        return body


async def get_block(session: ClientSession, node_url: str, block_hash: str, headers=None):
    """Fetch a block (header and transactions) by hash."""
    url = f"{node_url}/blockflow/blocks/{block_hash}"
    return await _get_json(session, url, headers=headers)


async def get_hashes_at_height(
    session: ClientSession,
    node_url: str,
    height: int,
    from_group: int,
    to_group: int,
    headers=None,
):
    """Main chain block hashes at a height; the first entry is the canonical one."""
    url = f"{node_url}/blockflow/hashes"
    params = {"fromGroup": from_group, "toGroup": to_group, "height": height}
    return await _get_json(session, url, params=params, headers=headers)


class NodeClient:
    """Binds an HTTP session, node URL and API key for the chain verifier."""

    def __init__(self, session: ClientSession, node_url: str, api_key: Optional[str] = None):
        self.session = session
        self.node_url = node_url.rstrip("/")
        self.headers = {"X-API-KEY": api_key} if api_key else None

    async def get_block(self, block_hash: str):
        return await get_block(self.session, self.node_url, block_hash, self.headers)

    async def get_hashes_at_height(self, height: int, from_group: int, to_group: int):
        return await get_hashes_at_height(
            self.session, self.node_url, height, from_group, to_group, self.headers
        )
