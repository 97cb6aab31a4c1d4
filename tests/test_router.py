import threading

from linechat.constants import (
    DM_SELF,
    DM_USAGE,
    NO_USERS,
    UNKNOWN_COMMAND,
)
from linechat.router import RouteResult

STAMP = "[13:05:09]"


def _lines(session) -> list[str]:
    return session.outbound.lines


def test_broadcast_reaches_everyone_including_sender(router, join) -> None:
    alice, bob, carol = join("alice"), join("bob"), join("carol")

    assert router.route_line(alice, "hello all") is RouteResult.CONTINUE

    expected = [f"{STAMP} alice: hello all"]
    assert _lines(alice) == expected
    assert _lines(bob) == expected
    assert _lines(carol) == expected


def test_broadcast_to_empty_registry_is_noop(router, make_session) -> None:
    ghost = make_session("ghost")

    assert router.route_line(ghost, "anyone?") is RouteResult.CONTINUE
    assert router.broadcast("nobody home") == 0
    assert _lines(ghost) == []


def test_users_on_empty_registry_returns_fixed_message(router, make_session) -> None:
    ghost = make_session("ghost")
    router.route_line(ghost, "/users")
    assert _lines(ghost) == [NO_USERS]


def test_users_lists_live_members_to_sender_only(router, join, registry) -> None:
    alice, bob = join("alice"), join("Bob")
    carol = join("carol")
    registry.remove(carol)

    router.route_line(alice, "/USERS")

    assert _lines(alice) == [
        "── Online Users (2) ──",
        "  • alice",
        "  • Bob",
    ]
    assert _lines(bob) == []
    assert _lines(carol) == []


def test_dm_delivers_to_target_and_echoes_to_sender(router, join, stats) -> None:
    alice, bob, carol = join("alice"), join("bob"), join("carol")

    router.route_line(alice, "/dm bob hello there")

    assert _lines(bob) == [f"{STAMP} [DM from alice] hello there"]
    assert _lines(alice) == [f"{STAMP} [DM to bob] hello there"]
    assert _lines(carol) == []
    assert stats.get("dms") == 1
    assert stats.get("deliveries") == 2


def test_dm_keyword_and_target_are_case_insensitive(router, join) -> None:
    alice, bob = join("alice"), join("bob")

    router.route_line(alice, "/DM BOB hi")

    assert _lines(bob) == [f"{STAMP} [DM from alice] hi"]
    # The echo names the recipient by their registered display name.
    assert _lines(alice) == [f"{STAMP} [DM to bob] hi"]


def test_dm_body_keeps_inner_whitespace(router, join) -> None:
    alice, bob = join("alice"), join("bob")
    router.route_line(alice, "/dm bob  spaced   out  text")
    assert _lines(bob) == [f"{STAMP} [DM from alice] spaced   out  text"]


def test_dm_to_self_is_rejected_locally(router, join) -> None:
    alice, bob = join("Alice"), join("bob")

    router.route_line(alice, "/dm alice hi")

    assert _lines(alice) == [DM_SELF]
    assert _lines(bob) == []


def test_dm_to_unknown_user_is_rejected_locally(router, join) -> None:
    alice, bob = join("alice"), join("bob")

    router.route_line(alice, "/dm nobody hi")

    assert _lines(alice) == ["⚠ User 'nobody' not found. Use /users to see who's online."]
    assert _lines(bob) == []


def test_dm_malformed_usage(router, join) -> None:
    alice, bob = join("alice"), join("bob")

    router.route_line(alice, "/dm bob")
    router.route_line(alice, "/dm")

    assert _lines(alice) == [DM_USAGE, DM_USAGE]
    assert _lines(bob) == []


def test_unknown_command_is_never_broadcast(router, join, stats) -> None:
    alice, bob = join("alice"), join("bob")

    for line in ("/foo", "/quit now", "/users please", "/dmx bob hi", "/"):
        assert router.route_line(alice, line) is RouteResult.CONTINUE

    assert _lines(alice) == [UNKNOWN_COMMAND] * 5
    assert _lines(bob) == []
    assert stats.get("broadcasts") == 0


def test_quit_stops_processing(router, join) -> None:
    alice, bob = join("alice"), join("bob")

    assert router.route_line(alice, "/quit") is RouteResult.QUIT
    assert router.route_line(alice, "/QUIT") is RouteResult.QUIT
    assert _lines(alice) == []
    assert _lines(bob) == []


def test_embedded_line_break_cannot_forge_a_second_line(router, join) -> None:
    alice, bob = join("alice"), join("bob")

    router.route_line(alice, f"hello\r{STAMP} 🔴 carol has left the chat.")

    assert _lines(bob) == [f"{STAMP} alice: hello {STAMP} 🔴 carol has left the chat."]
    assert _lines(alice) == _lines(bob)


def test_dm_body_with_form_feed_arrives_as_one_line(router, join) -> None:
    alice, bob = join("alice"), join("bob")

    router.route_line(alice, "/dm bob one\x0ctwo three")

    assert _lines(bob) == [f"{STAMP} [DM from alice] one two three"]
    assert _lines(alice) == [f"{STAMP} [DM to bob] one two three"]


def test_failed_recipient_does_not_abort_fanout(router, join, stats) -> None:
    alice = join("alice")
    dead = join("dead", fail=True)
    bob = join("bob")

    router.route_line(alice, "still here")

    assert _lines(alice) == [f"{STAMP} alice: still here"]
    assert _lines(bob) == [f"{STAMP} alice: still here"]
    assert _lines(dead) == []
    assert stats.get("delivery_failures") == 1
    assert stats.get("deliveries") == 2


def test_failed_dm_target_still_echoes_to_sender(router, join) -> None:
    alice = join("alice")
    join("dead", fail=True)

    router.route_line(alice, "/dm dead hi")

    assert _lines(alice) == [f"{STAMP} [DM to dead] hi"]


def test_concurrent_joins_then_broadcast_reach_everyone_once(router, registry, make_session) -> None:
    for _ in range(5):
        registry.clear_all()
        sender = make_session("sender")
        registry.add(sender)
        joiners = [make_session(f"user{i}") for i in range(40)]
        barrier = threading.Barrier(len(joiners))

        def do_join(s) -> None:
            barrier.wait()
            registry.add(s)

        threads = [threading.Thread(target=do_join, args=(s,)) for s in joiners]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        router.route_line(sender, "ping")

        expected = [f"{STAMP} sender: ping"]
        assert _lines(sender) == expected
        for s in joiners:
            assert _lines(s) == expected
