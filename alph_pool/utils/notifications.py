"""Payout notifications via Discord and Telegram"""

import aiohttp
import logging
from typing import Optional
from datetime import datetime

logger = logging.getLogger("Notifications")


class NotificationManager:
    """Sends reward, orphan and stalled payout alerts to the configured services"""

    def __init__(
        self,
        discord_webhook: Optional[str] = None,
        telegram_bot_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
    ):
        self.discord_webhook = discord_webhook
        self.telegram_bot_token = telegram_bot_token
        self.telegram_chat_id = telegram_chat_id

        services = []
        if self.discord_webhook:
            services.append("Discord")
        if self.telegram_bot_token and self.telegram_chat_id:
            services.append("Telegram")

        if services:
            logger.debug("Notifications enabled: %s", ", ".join(services))
        else:
            logger.debug("No notification services configured")

    @property
    def enabled(self) -> bool:
        return bool(self.discord_webhook or (self.telegram_bot_token and self.telegram_chat_id))

    async def notify_block_rewarded(
        self,
        block_hash: str,
        height: int,
        from_group: int,
        to_group: int,
        reward_alph: float,
    ):
        """Send notifications for a block whose reward was credited"""
        chain = f"{from_group}:{to_group}"
        embed = {
            "title": f"✓ Block {height} REWARDED (chain {chain})",
            "color": 65280,  # Green
            "fields": [
                {"name": "Height", "value": str(height), "inline": True},
                {"name": "Reward", "value": f"`{reward_alph:.6f} ALPH`", "inline": True},
                {"name": "Block Hash", "value": f"`{block_hash[:16]}...`"},
                {"name": "Timestamp", "value": datetime.now().isoformat()},
            ],
        }
        message = f"✓ *Block REWARDED (chain {chain})*\n\n"
        message += f"*Height:* `{height}`\n"
        message += f"*Reward:* `{reward_alph:.6f} ALPH`\n"
        message += f"*Block Hash:* `{block_hash[:16]}...`\n"
        message += f"*Time:* `{datetime.now().isoformat()}`"
        await self._send("reward", embed, message)

    async def notify_block_orphaned(
        self,
        block_hash: str,
        height: int,
        from_group: int,
        to_group: int,
        reason: str,
    ):
        """Send notifications for a block rolled back because it left the main chain"""
        chain = f"{from_group}:{to_group}"
        embed = {
            "title": f"🚫 Block {height} ORPHANED (chain {chain})",
            "color": 16711680,  # Red
            "fields": [
                {"name": "Height", "value": str(height), "inline": True},
                {"name": "Status", "value": reason, "inline": True},
                {"name": "Block Hash", "value": f"`{block_hash[:16]}...`"},
                {"name": "Timestamp", "value": datetime.now().isoformat()},
            ],
        }
        message = f"🚫 *Block ORPHANED (chain {chain})*\n\n"
        message += f"*Height:* `{height}`\n"
        message += f"*Status:* {reason}\n"
        message += f"*Block Hash:* `{block_hash[:16]}...`\n"
        message += f"*Time:* `{datetime.now().isoformat()}`"
        await self._send("orphan", embed, message)

    async def notify_payout_stalled(self, block_hash: str, failures: int, error: str):
        """Send notifications for a pending block that keeps failing to settle"""
        embed = {
            "title": "⚠ Block payout STALLED",
            "color": 16753920,  # Orange
            "fields": [
                {"name": "Consecutive failures", "value": str(failures), "inline": True},
                {"name": "Error", "value": f"`{error[:200]}`"},
                {"name": "Block Hash", "value": f"`{block_hash[:16]}...`"},
                {"name": "Timestamp", "value": datetime.now().isoformat()},
            ],
        }
        message = "⚠ *Block payout STALLED*\n\n"
        message += f"*Consecutive failures:* `{failures}`\n"
        message += f"*Error:* `{error[:200]}`\n"
        message += f"*Block Hash:* `{block_hash[:16]}...`\n"
        message += f"*Time:* `{datetime.now().isoformat()}`"
        await self._send("stalled payout", embed, message)

    async def _send(self, kind: str, embed: dict, message: str):
        # Try Discord webhook
        if self.discord_webhook:
            try:
                await self._post_discord_embed(embed)
            except Exception as e:
                logger.error("Discord %s notification failed: %s", kind, e)

        # Try Telegram
        if self.telegram_bot_token and self.telegram_chat_id:
            try:
                await self._post_telegram_message(message)
            except Exception as e:
                logger.error("Telegram %s notification failed: %s", kind, e)

    async def _post_discord_embed(self, embed: dict):
        """Helper to post a Discord embed via webhook"""
        if not self.discord_webhook:
            return

        payload = {"embeds": [embed], "username": "Pool Payouts"}

        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.discord_webhook,
                json=payload,
                headers={"Content-Type": "application/json"},
            ) as response:
                if response.status != 204:
                    error_text = await response.text()
                    raise RuntimeError(
                        f"Discord webhook failed: {response.status} - {error_text}"
                    )

    async def _post_telegram_message(self, message: str):
        url = f"https://api.telegram.org/bot{self.telegram_bot_token}/sendMessage"
        payload = {
            "chat_id": self.telegram_chat_id,
            "text": message,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise RuntimeError(
                        f"Telegram API failed: {response.status} - {error_text}"
                    )
