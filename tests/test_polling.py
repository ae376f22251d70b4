from typing import Any

import anyio
import pytest

from tgdispatch.errors import (
    PollerUnauthorized,
    TelegramAPIError,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramUnauthorized,
    UpdateDecodeError,
)
from tgdispatch.polling import Backoff, Poller, PollerState
from tgdispatch.router import Router
from tgdispatch.update import TypedUpdate
from tests.fakes import FakeBot, message_update


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _recording_router(seen: list[int], *, fail_on: set[int] | None = None) -> Router:
    router = Router()

    @router.update()
    async def record(update: TypedUpdate) -> None:
        seen.append(update.update_id)
        if fail_on and update.update_id in fail_on:
            raise RuntimeError(f"failed {update.update_id}")

    return router


def _poller(router: Router, bot: FakeBot, **kwargs: Any) -> Poller:
    kwargs.setdefault("sleep", _Sleeps())
    kwargs.setdefault("rand", lambda: 0.5)
    poller = Poller(router, bot, **kwargs)
    if bot.on_exhausted is None:
        bot.on_exhausted = poller.stop
    return poller


@pytest.mark.anyio
async def test_offset_advances_past_batch() -> None:
    seen: list[int] = []
    bot = FakeBot([[message_update(5), message_update(6), message_update(7)]])
    poller = _poller(_recording_router(seen), bot)

    await poller.run()

    assert seen == [5, 6, 7]
    assert poller.offset == 8
    assert [call["offset"] for call in bot.get_updates_calls] == [None, 8]
    assert poller.state is PollerState.STOPPED


@pytest.mark.anyio
async def test_handler_failure_does_not_stop_batch() -> None:
    seen: list[int] = []
    reported: list[BaseException] = []
    bot = FakeBot([[message_update(1), message_update(2), message_update(3)]])
    poller = _poller(
        _recording_router(seen, fail_on={2}),
        bot,
        error_sink=lambda err, upd: reported.append(err),
    )

    await poller.run()

    assert seen == [1, 2, 3]
    assert poller.offset == 4
    assert len(reported) == 1
    assert "failed 2" in str(reported[0])


@pytest.mark.anyio
async def test_duplicates_below_offset_are_skipped() -> None:
    seen: list[int] = []
    bot = FakeBot(
        [
            [message_update(5), message_update(6)],
            [message_update(6), message_update(7)],
        ]
    )
    poller = _poller(_recording_router(seen), bot)

    await poller.run()

    assert seen == [5, 6, 7]
    assert poller.offset == 8


@pytest.mark.anyio
async def test_undecodable_update_is_reported_and_skipped() -> None:
    seen: list[int] = []
    reported: list[tuple[BaseException, object]] = []
    bot = FakeBot([[{"update_id": 3, "message": "garbage"}, message_update(4)]])
    poller = _poller(
        _recording_router(seen),
        bot,
        error_sink=lambda err, upd: reported.append((err, upd)),
    )

    await poller.run()

    assert seen == [4]
    assert poller.offset == 5
    assert len(reported) == 1
    assert isinstance(reported[0][0], UpdateDecodeError)
    assert reported[0][1] is None


@pytest.mark.anyio
async def test_network_errors_back_off_exponentially() -> None:
    seen: list[int] = []
    sleeps = _Sleeps()
    bot = FakeBot(
        [
            TelegramNetworkError("down"),
            TelegramAPIError(502, "bad gateway"),
            [message_update(1)],
        ]
    )
    poller = _poller(_recording_router(seen), bot, sleep=sleeps)

    await poller.run()

    assert sleeps.delays == [1.0, 2.0]
    assert seen == [1]


@pytest.mark.anyio
async def test_retry_after_is_honoured() -> None:
    sleeps = _Sleeps()
    bot = FakeBot([TelegramRetryAfter(7), [message_update(1)]])
    poller = _poller(_recording_router([]), bot, sleep=sleeps)

    await poller.run()

    assert sleeps.delays == [7.0]
    assert poller.offset == 2


@pytest.mark.anyio
async def test_unauthorized_stops_polling() -> None:
    bot = FakeBot([TelegramUnauthorized(401, "Unauthorized")])
    poller = _poller(_recording_router([]), bot)

    with pytest.raises(PollerUnauthorized) as excinfo:
        await poller.run()

    assert excinfo.value.error.code == 401
    assert poller.state is PollerState.STOPPED


@pytest.mark.anyio
async def test_existing_webhook_is_removed_first() -> None:
    bot = FakeBot(webhook_url="https://example.com/hook", pending=3)
    poller = _poller(_recording_router([]), bot, drop_pending_updates=True)

    await poller.run()

    assert bot.delete_webhook_calls == [{"drop_pending_updates": True}]
    assert all(call["timeout_s"] == 50 for call in bot.get_updates_calls)


@pytest.mark.anyio
async def test_drop_pending_drains_backlog_without_dispatch() -> None:
    seen: list[int] = []
    bot = FakeBot(
        [
            [message_update(1), message_update(2)],
            [message_update(3)],
            [],
            [message_update(10)],
        ]
    )
    poller = _poller(_recording_router(seen), bot, drop_pending_updates=True)

    await poller.run()

    assert seen == [10]
    assert [call["timeout_s"] for call in bot.get_updates_calls[:3]] == [0, 0, 0]
    assert [call["offset"] for call in bot.get_updates_calls] == [None, 3, 4, 4, 11]
    assert bot.delete_webhook_calls == []


@pytest.mark.anyio
async def test_stop_from_handler_finishes_batch() -> None:
    seen: list[int] = []
    bot = FakeBot([[message_update(5), message_update(6)], [message_update(7)]])
    router = Router()
    poller = _poller(router, bot)

    @router.update()
    def record(update: TypedUpdate) -> None:
        seen.append(update.update_id)
        poller.stop()

    await poller.run()

    assert seen == [5, 6]
    assert poller.offset == 7
    assert len(bot.get_updates_calls) == 1


@pytest.mark.anyio
async def test_stop_interrupts_long_poll_wait() -> None:
    class BlockingBot(FakeBot):
        async def get_updates(self, *args: Any, **kwargs: Any) -> list[dict[str, Any]]:
            await anyio.sleep_forever()
            raise AssertionError("unreachable")

    poller = _poller(Router(), BlockingBot())

    with anyio.fail_after(2):
        async with anyio.create_task_group() as tg:
            tg.start_soon(poller.run)
            while poller.state is not PollerState.FETCHING:
                await anyio.sleep(0.001)
            poller.stop()

    assert poller.state is PollerState.STOPPED


@pytest.mark.anyio
async def test_allowed_updates_and_limit_are_forwarded() -> None:
    bot = FakeBot()
    poller = _poller(
        Router(), bot, limit=10, timeout_s=5, allowed_updates=["message"]
    )

    await poller.run()

    assert bot.get_updates_calls == [
        {"offset": None, "limit": 10, "timeout_s": 5, "allowed_updates": ["message"]}
    ]


def test_poller_rejects_invalid_limit() -> None:
    with pytest.raises(ValueError):
        Poller(Router(), FakeBot(), limit=0)
    with pytest.raises(ValueError):
        Poller(Router(), FakeBot(), limit=101)


def test_backoff_delay_is_capped_and_jittered() -> None:
    backoff = Backoff(initial=1.0, maximum=5.0, factor=2.0, jitter=0.1)

    assert backoff.delay(0, lambda: 0.5) == 1.0
    assert backoff.delay(0, lambda: 0.0) == pytest.approx(0.9)
    assert backoff.delay(0, lambda: 1.0) == pytest.approx(1.1)
    assert backoff.delay(10, lambda: 1.0) == 5.0


def test_backoff_validation() -> None:
    with pytest.raises(ValueError):
        Backoff(initial=5.0, maximum=1.0)
    with pytest.raises(ValueError):
        Backoff(jitter=2.0)


@pytest.mark.anyio
async def test_repeated_id_within_batch_is_dispatched_once() -> None:
    seen: list[int] = []
    bot = FakeBot([[message_update(5), message_update(5), message_update(6)]])
    poller = _poller(_recording_router(seen), bot)

    await poller.run()

    assert seen == [5, 6]
    assert poller.offset == 7


def test_backoff_delay_survives_huge_attempt_counts() -> None:
    backoff = Backoff()

    assert backoff.delay(1024, lambda: 0.5) == 30.0
    assert backoff.delay(5000, lambda: 0.5) == 30.0
    assert Backoff(factor=2).delay(5000, lambda: 1.0) == 30.0


@pytest.mark.anyio
async def test_long_outage_keeps_retrying() -> None:
    seen: list[int] = []
    sleeps = _Sleeps()
    failures: list[list[dict[str, Any]] | Exception] = [
        TelegramNetworkError("down") for _ in range(1100)
    ]
    bot = FakeBot([*failures, [message_update(1)]])
    poller = _poller(_recording_router(seen), bot, sleep=sleeps)

    await poller.run()

    assert seen == [1]
    assert poller.offset == 2
    assert len(sleeps.delays) == 1100
    assert sleeps.delays[-1] == 30.0
