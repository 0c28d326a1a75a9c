"""Overlay render session: token gating, edge-triggered animations and the projected view."""

import pytest

from models.overlay import OverlayState, RevealPhase
from services.errors import AuthorizationError
from services.inventory_ledger import InventoryLedger
from services.overlay_render import OverlayRenderSession, token_matches
from services.overlay_state import OverlayStateMachine
from services.record_store import BOARDS, PRIZES


@pytest.fixture
def overlay_factory(store, channel):
    def factory(board_id, token, pre_roll_seconds=0):
        session = OverlayRenderSession(board_id, token, store, channel, pre_roll_seconds=pre_roll_seconds)
        session.views = []

        async def capture(current):
            session.views.append(current.view())

        session.on_render = capture
        return session

    return factory


def test_token_matches():
    assert token_matches("abc", "abc")
    assert not token_matches("abc", "abd")
    assert not token_matches("abc", None)
    assert not token_matches(None, "abc")
    assert not token_matches("", "")


@pytest.mark.asyncio
async def test_wrong_token_is_denied_without_loading(board_factory, overlay_factory, channel):
    seeded = board_factory([("1등", 1)])
    session = overlay_factory(seeded["board"]["_id"], "wrong-token")

    with pytest.raises(AuthorizationError):
        await session.start()

    view = session.view()
    assert view.denied is True
    assert view.title is None
    assert view.counters == []
    assert session.views[-1].denied is True
    assert channel.subscriber_count() == 0


@pytest.mark.asyncio
async def test_unknown_board_looks_like_wrong_token(overlay_factory):
    session = overlay_factory("no-such-board", "anything")

    with pytest.raises(AuthorizationError) as excinfo:
        await session.start()

    assert excinfo.value.message == "Access denied"
    assert session.view().denied is True


@pytest.mark.asyncio
async def test_view_before_refresh_is_loading(board_factory, overlay_factory):
    seeded = board_factory([("1등", 1)])
    session = overlay_factory(seeded["board"]["_id"], seeded["board"]["overlay_token"])

    assert session.view().loading is True


@pytest.mark.asyncio
async def test_counters_skip_blank_tier_and_clamp(store, board_factory, overlay_factory):
    seeded = board_factory([("1등", 2), ("2등", 3)], blanks=4)
    board_id = seeded["board"]["_id"]
    # Out-of-range rows must still render within [0, total]
    store.tables[PRIZES][seeded["prizes"][0]["_id"]]["qty_left"] = -1
    store.tables[PRIZES][seeded["prizes"][1]["_id"]]["qty_left"] = 9
    session = overlay_factory(board_id, seeded["board"]["overlay_token"])

    await session.start()

    counters = session.view().counters
    assert [counter.tier for counter in counters] == ["1등", "2등"]
    assert [(counter.qty_left, counter.qty_total) for counter in counters] == [(0, 2), (3, 3)]
    await session.close()


@pytest.mark.asyncio
async def test_modal_shows_focused_prize(store, channel, board_factory, overlay_factory):
    seeded = board_factory([("1등", 1), ("2등", 1)])
    board_id = seeded["board"]["_id"]
    session = overlay_factory(board_id, seeded["board"]["overlay_token"])
    await session.start()
    machine = OverlayStateMachine(store)

    await machine.open_modal(board_id, seeded["prizes"][1]["_id"])
    await channel.drain()

    view = session.view()
    assert view.modal.visible is True
    assert view.modal.prize.tier == "2등"
    assert session.modal_entries == 1

    # Switching prize inside the open modal replays the entry
    await machine.open_modal(board_id, seeded["prizes"][0]["_id"])
    await channel.drain()
    assert session.modal_entries == 2

    await machine.close_modal(board_id)
    await channel.drain()
    assert session.view().modal.visible is False
    await session.close()


@pytest.mark.asyncio
async def test_modal_with_unknown_prize_stays_hidden(store, channel, board_factory, overlay_factory):
    seeded = board_factory([("1등", 1)])
    board_id = seeded["board"]["_id"]
    session = overlay_factory(board_id, seeded["board"]["overlay_token"])
    await session.start()

    await OverlayStateMachine(store).open_modal(board_id, "deleted-prize")
    await channel.drain()

    assert session.view().modal.visible is False
    await session.close()


@pytest.mark.asyncio
async def test_reveal_starts_once_per_rising_edge(board_factory, overlay_factory):
    seeded = board_factory([("1등", 1)])
    board_id = seeded["board"]["_id"]
    session = overlay_factory(board_id, seeded["board"]["overlay_token"])
    await session.start()

    for flag in (False, True, True):
        session.observe_overlay_state(OverlayState(board_id=board_id, show_last_result=flag))

    assert session.reveal_starts == 1
    await session.close()


@pytest.mark.asyncio
async def test_draw_reveal_goes_through_pre_roll(store, channel, board_factory, overlay_factory):
    seeded = board_factory([("1등", 2)])
    board_id = seeded["board"]["_id"]
    prize_id = seeded["prizes"][0]["_id"]
    session = overlay_factory(board_id, seeded["board"]["overlay_token"], pre_roll_seconds=30)
    await session.start()

    await InventoryLedger(store).commit_draw(board_id, prize_id, "Alice")
    await channel.drain()

    view = session.view()
    assert session.reveal_starts == 1
    assert view.result.phase == RevealPhase.PRE_ROLL
    assert view.result.draw.viewer_name == "Alice"
    assert view.recent_winner is None

    await session.close()
    assert session.phase == RevealPhase.PRE_ROLL


@pytest.mark.asyncio
async def test_draw_reveal_settles_to_showing(store, channel, board_factory, overlay_factory):
    seeded = board_factory([("1등", 2)])
    board_id = seeded["board"]["_id"]
    prize_id = seeded["prizes"][0]["_id"]
    session = overlay_factory(board_id, seeded["board"]["overlay_token"])
    await session.start()

    await InventoryLedger(store).commit_draw(board_id, prize_id, "Alice")
    await channel.drain()
    await session.settle()

    view = session.view()
    assert view.result.phase == RevealPhase.SHOWING
    assert view.result.draw.viewer_name == "Alice"
    assert view.result.draw.prize.tier == "1등"
    assert view.counters[0].qty_left == 1
    assert session.views[-1].result.phase == RevealPhase.SHOWING
    await session.close()


@pytest.mark.asyncio
async def test_hiding_result_shows_recent_winner_chip(store, channel, board_factory, overlay_factory):
    seeded = board_factory([("1등", 2)])
    board_id = seeded["board"]["_id"]
    session = overlay_factory(board_id, seeded["board"]["overlay_token"])
    await session.start()

    await InventoryLedger(store).commit_draw(board_id, seeded["prizes"][0]["_id"], "Alice")
    await channel.drain()
    await session.settle()
    await OverlayStateMachine(store).hide_last_result(board_id)
    await channel.drain()

    view = session.view()
    assert view.result.phase == RevealPhase.HIDDEN
    assert view.result.draw is None
    assert view.recent_winner.viewer_name == "Alice"
    assert view.recent_winner.tier == "1등"
    await session.close()


@pytest.mark.asyncio
async def test_deleted_board_denies_open_overlay(store, channel, board_factory, overlay_factory):
    seeded = board_factory([("1등", 1)])
    board_id = seeded["board"]["_id"]
    session = overlay_factory(board_id, seeded["board"]["overlay_token"])
    await session.start()

    del store.tables[BOARDS][board_id]
    await OverlayStateMachine(store).open_modal(board_id, None)
    await channel.drain()

    assert session.view().denied is True
    await session.close()


@pytest.mark.asyncio
async def test_board_teardown_alone_denies_open_overlay(store, channel, board_factory, overlay_factory):
    seeded = board_factory([("1등", 1)])
    board_id = seeded["board"]["_id"]
    session = overlay_factory(board_id, seeded["board"]["overlay_token"])
    await session.start()
    assert channel.subscriber_count(BOARDS) == 1

    # Only the board row changes; nothing keyed by board_id is written
    await store.delete_many(BOARDS, {"_id": board_id})
    await channel.drain()

    assert session.view().denied is True
    await session.close()
    assert channel.subscriber_count() == 0
