import asyncio
import signal

import uvicorn

from common.db import dispose_db_engine, init_db_engine
from common.logger import Level, Logger
from common.ton_client.client import TonCenterClient, TonCenterConfig
from ton_pay_verifier.config import load_config
from ton_pay_verifier.health import app as health_app
from ton_pay_verifier.locator import TransactionLocator
from ton_pay_verifier.notifier import LogNotifier, TelegramNotifier
from ton_pay_verifier.poller import ConfirmationPoller
from ton_pay_verifier.service import ReconciliationService
from ton_pay_verifier.store import SqlIntentStore


def main() -> None:
    cfg = load_config()

    Logger.configure("ton-pay-verifier", level=cfg.log_level)
    Logger.silence("httpx", "httpcore", "telegram", "uvicorn.access", level=Level.WARNING)

    init_db_engine(cfg.database_url)

    ton = TonCenterClient(TonCenterConfig(endpoint=cfg.rpc_endpoint, api_key=cfg.toncenter_api_key))
    poller = ConfirmationPoller(
        TransactionLocator(ton, page_size=cfg.ledger_page_size, max_pages=cfg.ledger_max_pages),
        max_retries=cfg.poll_retries,
        delay_seconds=cfg.poll_delay_seconds,
    )
    if cfg.tg_bot_token:
        notifier = TelegramNotifier(cfg.tg_bot_token)
    else:
        Logger.warning("TG_BOT_TOKEN is empty, notifications go to the log only")
        notifier = LogNotifier()

    service = ReconciliationService(
        store=SqlIntentStore(),
        poller=poller,
        notifier=notifier,
        default_account=cfg.contract_address,
        max_attempts=cfg.max_poll_attempts,
        concurrency=cfg.concurrency,
        poll_interval_seconds=cfg.poll_interval_seconds,
        admin_chat_id=cfg.tg_admin_chat_id,
    )

    async def _run() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        server = None
        server_task = None
        if cfg.health_enabled:
            server = uvicorn.Server(
                uvicorn.Config(health_app, host=cfg.health_host, port=cfg.health_port, log_level="warning")
            )
            server_task = asyncio.create_task(server.serve())
            # uvicorn may take over SIGINT/SIGTERM; its exit stops the poller too
            server_task.add_done_callback(lambda _: stop_event.set())
            Logger.info("HTTP server listening on %s:%d", cfg.health_host, cfg.health_port)

        Logger.info("Polling service started, contract=%s", cfg.contract_address)
        try:
            await service.run_forever(stop_event)
        finally:
            if server is not None and server_task is not None:
                server.should_exit = True
                await server_task
            await notifier.aclose()
            await ton.aclose()
            await dispose_db_engine()
            Logger.info("Polling service stopped")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
