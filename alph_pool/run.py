import asyncio
from dataclasses import dataclass

from aiohttp import ClientSession, ClientTimeout

from .config import Settings
from .db.store import KeyValueStore
from .logging_setup import setup_logging
from .payouts.chain_verifier import ChainVerifier
from .payouts.reward_allocator import RewardAllocator
from .payouts.round_ledger import RoundLedger
from .payouts.scan_loop import ScanLoop
from .rpc.alph import NodeClient


@dataclass
class Accounting:
    """The wired reward accounting components.

    A share server embedding the pool feeds ``ledger.record_share``; the
    scanner matures found blocks in the background.
    """

    store: KeyValueStore
    ledger: RoundLedger
    verifier: ChainVerifier
    allocator: RewardAllocator
    scanner: ScanLoop


def create_accounting(
    settings: Settings, store: KeyValueStore, http: ClientSession, notification_manager=None
) -> Accounting:
    node = NodeClient(http, settings.node_url, settings.node_api_key or None)
    verifier = ChainVerifier(node)
    allocator = RewardAllocator(store)
    scanner = ScanLoop(
        store,
        verifier,
        allocator,
        lock_duration_seconds=settings.lock_duration,
        scan_interval_seconds=settings.scan_block_interval,
        notification_manager=notification_manager,
        failure_alert_threshold=settings.failure_alert_threshold,
    )
    return Accounting(
        store=store,
        ledger=RoundLedger(store),
        verifier=verifier,
        allocator=allocator,
        scanner=scanner,
    )


def run_with_settings(settings: Settings):
    logger = setup_logging(settings.log_level)
    logger.info("Starting Alephium pool payouts")
    logger.debug("Node: %s, store: %s", settings.node_url, settings.store_path)

    async def main():
        notification_manager = None
        if settings.discord_webhook or (
            settings.telegram_bot_token and settings.telegram_chat_id
        ):
            from .utils.notifications import NotificationManager

            notification_manager = NotificationManager(
                discord_webhook=settings.discord_webhook,
                telegram_bot_token=settings.telegram_bot_token,
                telegram_chat_id=settings.telegram_chat_id,
            )

        timeout = ClientTimeout(total=settings.rpc_timeout)
        async with KeyValueStore(settings.store_path) as store, ClientSession(
            timeout=timeout
        ) as http:
            accounting = create_accounting(settings, store, http, notification_manager)
            tasks = []

            await accounting.scanner.start()
            tasks.append(accounting.scanner.task)
            logger.info(
                "Pending block scanner started (%ss interval)",
                settings.scan_block_interval,
            )

            # Start web dashboard if enabled
            if settings.enable_dashboard:
                import uvicorn
                from .web.api import app, set_store

                logger.info("Starting payouts API on port %d", settings.dashboard_port)
                set_store(store, settings.lock_duration)
                config = uvicorn.Config(
                    app, host="0.0.0.0", port=settings.dashboard_port, log_level="warning"
                )
                server = uvicorn.Server(config)
                tasks.append(asyncio.create_task(server.serve()))

            try:
                # Wait for any task to complete or fail
                await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            finally:
                await accounting.scanner.stop()

    asyncio.run(main())


def run_from_env():
    run_with_settings(Settings())
