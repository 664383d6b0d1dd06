import asyncio
import unittest
from types import SimpleNamespace

from common.errors import DatastoreError, NotificationError
from common.models import IntentState
from ton_pay_verifier.locator import TransactionLocator
from ton_pay_verifier.poller import ConfirmationPoller
from ton_pay_verifier.service import BatchReport, ReconciliationService
from ton_pay_verifier.test.fakes import (
    FakeLedger,
    FakeStore,
    RecordingNotifier,
    RecordingSleep,
    configure_test_logger,
    ext_in,
    ext_in_token,
    int_msg_token,
    internal,
    make_intent,
    tx,
)


def make_service(store, ledger, notifier, **kwargs) -> ReconciliationService:
    locator = TransactionLocator(ledger, page_size=kwargs.pop("page_size", 2))
    poller = ConfirmationPoller(locator, max_retries=kwargs.pop("max_retries", 3), sleep=RecordingSleep())
    return ReconciliationService(
        store=store,
        poller=poller,
        notifier=notifier,
        default_account="contract",
        poll_interval_seconds=0,
        **kwargs,
    )


class StubPoller:
    def __init__(self, results=None, *, hold: float = 0.0) -> None:
        self._results = results or {}
        self._hold = hold
        self.in_flight = 0
        self.max_in_flight = 0
        self.accounts: list[str] = []

    async def wait_for(self, digest, account):
        self.accounts.append(account)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self._hold)
        finally:
            self.in_flight -= 1
        result = self._results.get(digest)
        if isinstance(result, Exception):
            raise result
        return result


class ReconciliationServiceTest(unittest.IsolatedAsyncioTestCase):
    @classmethod
    def setUpClass(cls) -> None:
        configure_test_logger()

    async def test_match_on_third_page_confirms_intent(self) -> None:
        history = [
            tx(30, ext_in(1)),
            tx(29, internal(42)),
            tx(28, ext_in(2)),
            tx(27, None),
            tx(26, ext_in(42, import_fee=3_000)),
            tx(25, ext_in(3)),
        ]
        ledger = FakeLedger(history)
        intent = make_intent(1, ext_in_token(42), amount_nano=1_500_000_000, group_id=7)
        store = FakeStore([intent], related={("group", 7): SimpleNamespace(id=7, tg_chat_id=-1001)})
        notifier = RecordingNotifier()

        report = await make_service(store, ledger, notifier).run_once()

        self.assertEqual(report.confirmed, 1)
        self.assertEqual(len(ledger.calls), 3)
        row = store.intents[1]
        self.assertEqual(row.state, IntentState.confirmed)
        self.assertEqual(row.confirmed_tx_hash, tx(26).hash_b64)
        self.assertEqual(row.confirmed_lt, 26)
        self.assertIsNotNone(row.confirmed_at)
        self.assertEqual(len(notifier.sent), 1)
        target, text = notifier.sent[0]
        self.assertEqual(target, -1001)
        self.assertIn("confirmed", text)
        self.assertIn("1.5 TON", text)

    async def test_last_attempt_resets_intent_and_notifies_once(self) -> None:
        ledger = FakeLedger([tx(5, ext_in(1)), tx(4, ext_in(2))])
        intent = make_intent(2, ext_in_token(42), poll_attempts=9, target_address="EQwallet", payer_id=3)
        store = FakeStore([intent], related={("user", 3): SimpleNamespace(id=3, username="alice", tg_chat_id=555)})
        notifier = RecordingNotifier()

        report = await make_service(store, ledger, notifier, max_attempts=10).run_once()

        self.assertEqual(report.timed_out, 1)
        row = store.intents[2]
        self.assertEqual(row.state, IntentState.awaiting)
        self.assertEqual(row.poll_attempts, 0)
        self.assertIsNone(row.correlation_token)
        self.assertIsNone(row.target_address)
        self.assertEqual({call[0] for call in ledger.calls}, {"EQwallet"})
        self.assertEqual(len(notifier.sent), 1)
        self.assertEqual(notifier.sent[0][0], 555)
        self.assertIn("not confirmed", notifier.sent[0][1])
        self.assertIn("@alice", notifier.sent[0][1])

    async def test_miss_increments_attempts_and_keeps_token(self) -> None:
        token = ext_in_token(42)
        store = FakeStore([make_intent(3, token, poll_attempts=4)])
        notifier = RecordingNotifier()

        report = await make_service(store, FakeLedger([]), notifier).run_once()

        self.assertEqual(report, BatchReport(retried=1))
        row = store.intents[3]
        self.assertEqual(row.poll_attempts, 5)
        self.assertEqual(row.state, IntentState.pending)
        self.assertEqual(row.correlation_token, token)
        self.assertEqual(notifier.sent, [])

    async def test_confirmed_intent_is_left_alone(self) -> None:
        ledger = FakeLedger([tx(1, ext_in(42))])
        store = FakeStore([make_intent(4, "ab" * 32, state=IntentState.confirmed, confirmed_tx_hash="H")])
        notifier = RecordingNotifier()
        service = make_service(store, ledger, notifier)

        first = await service.run_once()
        second = await service.run_once()

        self.assertEqual(first.total, 0)
        self.assertEqual(second.total, 0)
        self.assertEqual(store.applied, [])
        self.assertEqual(ledger.calls, [])
        self.assertEqual(notifier.sent, [])
        self.assertEqual(store.intents[4].confirmed_tx_hash, "H")

    async def test_second_run_does_not_reconfirm(self) -> None:
        ledger = FakeLedger([tx(8, ext_in(42))])
        store = FakeStore([make_intent(5, ext_in_token(42))])
        notifier = RecordingNotifier()
        service = make_service(store, ledger, notifier, admin_chat_id=42)

        await service.run_once()
        await service.run_once()

        self.assertEqual(len(store.applied), 1)
        self.assertEqual(len(notifier.sent), 1)

    async def test_one_failing_intent_does_not_abort_batch(self) -> None:
        boom = bytes.fromhex("01" * 32)
        ok = bytes.fromhex("02" * 32)
        poller = StubPoller({boom: RuntimeError("parser exploded"), ok: tx(9)})
        store = FakeStore([make_intent(1, "01" * 32), make_intent(2, "02" * 32), make_intent(3, "03" * 32)])
        service = ReconciliationService(
            store=store,
            poller=poller,
            notifier=RecordingNotifier(),
            default_account="contract",
        )

        report = await service.run_once()

        self.assertEqual(report, BatchReport(confirmed=1, retried=1, failed=1))
        self.assertEqual(store.intents[1].poll_attempts, 0)
        self.assertEqual(store.intents[1].version, 0)
        self.assertEqual(store.intents[2].state, IntentState.confirmed)
        self.assertEqual(store.intents[3].poll_attempts, 1)

    async def test_polling_is_bounded_by_concurrency(self) -> None:
        poller = StubPoller(hold=0.01)
        store = FakeStore([make_intent(i, f"{i:064x}") for i in range(1, 8)])
        service = ReconciliationService(
            store=store,
            poller=poller,
            notifier=RecordingNotifier(),
            default_account="contract",
            concurrency=2,
        )

        report = await service.run_once()

        self.assertEqual(report.retried, 7)
        self.assertEqual(poller.max_in_flight, 2)
        self.assertEqual(poller.accounts, ["contract"] * 7)

    async def test_concurrent_write_wins(self) -> None:
        store = FakeStore([make_intent(6, ext_in_token(42))])
        store.concurrent_writes.add(6)
        notifier = RecordingNotifier()

        report = await make_service(store, FakeLedger([tx(3, ext_in(42))]), notifier).run_once()

        self.assertEqual(report, BatchReport(conflicts=1))
        self.assertEqual(store.intents[6].state, IntentState.pending)
        self.assertEqual(notifier.sent, [])

    async def test_notification_failure_is_swallowed(self) -> None:
        store = FakeStore([make_intent(7, ext_in_token(42))])
        notifier = RecordingNotifier(fail=NotificationError("chat not found"))

        report = await make_service(store, FakeLedger([tx(3, ext_in(42))]), notifier, admin_chat_id=1).run_once()

        self.assertEqual(report.confirmed, 1)
        self.assertEqual(store.intents[7].state, IntentState.confirmed)

    async def test_no_target_means_no_notification(self) -> None:
        store = FakeStore([make_intent(8, ext_in_token(42))])
        notifier = RecordingNotifier()

        await make_service(store, FakeLedger([tx(3, ext_in(42))]), notifier).run_once()

        self.assertEqual(notifier.sent, [])

    async def test_unusable_token_counts_as_miss(self) -> None:
        store = FakeStore([make_intent(9, "%%% not base64 %%%")])
        ledger = FakeLedger([tx(3, ext_in(42))])

        report = await make_service(store, ledger, RecordingNotifier()).run_once()

        self.assertEqual(report.retried, 1)
        self.assertEqual(store.intents[9].poll_attempts, 1)
        self.assertEqual(ledger.calls, [])

    async def test_internal_message_token_eventually_resets(self) -> None:
        store = FakeStore([make_intent(10, int_msg_token(42), poll_attempts=9, target_address="EQwallet")])
        ledger = FakeLedger([tx(3, ext_in(42))])

        report = await make_service(store, ledger, RecordingNotifier(), max_attempts=10).run_once()

        self.assertEqual(report, BatchReport(timed_out=1))
        row = store.intents[10]
        self.assertEqual(row.state, IntentState.awaiting)
        self.assertEqual(row.poll_attempts, 0)
        self.assertIsNone(row.correlation_token)
        self.assertIsNone(row.target_address)
        self.assertEqual(ledger.calls, [])

    async def test_datastore_error_aborts_run(self) -> None:
        class BrokenStore(FakeStore):
            async def list_pending(self):
                raise DatastoreError("connection refused")

        service = make_service(BrokenStore([]), FakeLedger([]), RecordingNotifier())
        with self.assertRaises(DatastoreError):
            await service.run_once()

    async def test_run_forever_survives_failed_cycle(self) -> None:
        stop_event = asyncio.Event()
        runs = []

        class FlakyService(ReconciliationService):
            async def run_once(self):
                runs.append(len(runs))
                if len(runs) == 1:
                    raise DatastoreError("connection refused")
                stop_event.set()
                return BatchReport()

        service = FlakyService(
            store=FakeStore([]),
            poller=StubPoller(),
            notifier=RecordingNotifier(),
            default_account="contract",
            poll_interval_seconds=0,
        )

        await asyncio.wait_for(service.run_forever(stop_event), timeout=5)

        self.assertEqual(runs, [0, 1])


if __name__ == "__main__":
    unittest.main()
