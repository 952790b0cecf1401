import json
import string

from peerlink.client.session_ids import (
    SessionIdMemory,
    build_share_link,
    generate_session_id,
    resolve_session_id,
    session_id_from_link,
)
from peerlink.models import normalize_session_id


def test_generated_ids_are_short_lowercase_tokens():
    session_id = generate_session_id()
    assert len(session_id) == 13
    assert set(session_id) <= set(string.ascii_lowercase + string.digits)
    assert generate_session_id() != session_id


def test_normalize_session_id():
    assert normalize_session_id("  My Room_1 ") == "myroom_1"
    assert normalize_session_id("ÄBC-déf") == "bc-df"
    assert normalize_session_id("x" * 80) == "x" * 50
    assert normalize_session_id(None) == ""


def test_explicit_id_wins_and_is_remembered(tmp_path):
    memory = SessionIdMemory(tmp_path / "state.json")
    assert resolve_session_id("Team-Sync", memory) == "team-sync"
    assert json.loads((tmp_path / "state.json").read_text()) == {"sessionId": "team-sync"}


def test_remembered_id_reused(tmp_path):
    memory = SessionIdMemory(tmp_path / "state.json")
    memory.save("standup")
    assert resolve_session_id(None, memory) == "standup"


def test_random_id_when_nothing_known(tmp_path):
    memory = SessionIdMemory(tmp_path / "state.json")
    session_id = resolve_session_id(None, memory)
    assert len(session_id) == 13
    assert memory.load() == session_id


def test_unreadable_memory_is_ignored(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{broken")
    assert SessionIdMemory(path).load() is None


def test_share_link_round_trip():
    link = build_share_link("https://call.example.com/", "room-42")
    assert link == "https://call.example.com?room=room-42"
    assert session_id_from_link(link) == "room-42"
    assert session_id_from_link("https://call.example.com") is None
