# tests/test_room.py
import itertools
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from chatlog.attachments import AttachmentError, Upload, resolve_attachment
from chatlog.config import ChatConfig, resolve_base_dir
from chatlog.core.encoding import from_data_url
from chatlog.core.types import Message
from chatlog.room import (
    ChatRequestError,
    ChatRoom,
    MessageNotFound,
    NotMessageOwner,
    validate_identity,
)
from chatlog.storage import StorageBackend
from chatlog.verify.verifier import LogVerifier

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture
def config(tmp_path: Path) -> ChatConfig:
    return ChatConfig(base_dir=tmp_path / "chat")


@pytest.fixture
def room(config: ChatConfig) -> ChatRoom:
    ids = (f"id-{n}" for n in itertools.count(1))
    clock = itertools.count(1760870400000)
    return ChatRoom(config, id_factory=lambda: next(ids), clock=lambda: next(clock))


def test_scenario_revoke_and_reactions(room: ChatRoom):
    room.post("alice", "111111", "A")
    room.post("bob", "222222", "B")
    views = room.post("carol", "333333", "C")
    assert [v.text for v in views] == ["A", "B", "C"]
    a, b, c = (v.id for v in views)

    views = room.revoke(b, "bob", "222222")
    assert [v.revoked for v in views] == [False, True, False]
    assert views[1].text is None
    assert views[1].message.author.nickname == "bob"

    room.react(c, "👍", "alice", "111111")
    room.react(c, "👍", "alice", "111111")
    assert room.reactions.summarize(c) == []

    room.react(a, "👍", "alice", "111111")
    views = room.react(a, "👍", "bob", "222222")
    assert [r.to_dict() for r in views[0].reactions] == [{"emoji": "👍", "count": 2}]


def test_revoked_view_hides_content_even_with_reactions(room: ChatRoom):
    views = room.post("alice", "111111", "secret", [Upload(PNG, "image/png", "a.png")])
    msg_id = views[-1].id
    room.react(msg_id, "🔥", "bob", "222222")
    views = room.revoke(msg_id, "alice", "111111")

    d = views[-1].to_dict()
    assert d["revoked"] is True
    assert "text" not in d and "imageDataUrls" not in d and "imagePaths" not in d
    assert d["reactions"] == [{"emoji": "🔥", "count": 1}]


def test_post_assigns_sequence_and_identity(room: ChatRoom):
    views = room.post("  alice  ", "123456", "  hi  ")
    msg = views[-1].message
    assert msg.id == "id-1"
    assert msg.sequence == 1
    assert msg.text == "hi"
    assert msg.author.user_key == "alice|123456"
    assert msg.created_at == 1760870400000


@pytest.mark.parametrize("nickname, qq, text, expected", [
    ("", "123456", "hi", "Nickname"),
    ("x" * 21, "123456", "hi", "Nickname"),
    ("alice", "1234", "hi", "QQ"),
    ("alice", "1234567890123456", "hi", "QQ"),
    ("alice", "12a456", "hi", "QQ"),
    ("alice", "123456", "   ", "empty"),
])
def test_post_rejects_bad_input(room: ChatRoom, nickname, qq, text, expected):
    with pytest.raises(ChatRequestError, match=expected) as info:
        room.post(nickname, qq, text)
    assert info.value.status == 400
    assert room.messages() == []


def test_post_rejects_non_image_and_oversized(room: ChatRoom, config: ChatConfig):
    with pytest.raises(ChatRequestError, match="image"):
        room.post("alice", "123456", None, [Upload(b"text", "text/plain")])
    big = Upload(b"\x00" * (config.max_attachment_bytes + 1), "image/png")
    with pytest.raises(ChatRequestError, match="larger"):
        room.post("alice", "123456", None, [big])


def test_inline_attachments_capped_at_six(room: ChatRoom):
    uploads = [Upload(PNG, "image/png", f"{i}.png") for i in range(8)]
    views = room.post("alice", "123456", None, uploads)
    refs = views[-1].attachments
    assert len(refs) == 6
    assert from_data_url(refs[0]) == ("image/png", PNG)


def test_file_attachments_are_saved_and_resolvable(tmp_path: Path):
    config = ChatConfig(base_dir=tmp_path / "chat", attachment_mode="file")
    room = ChatRoom(config, clock=lambda: 1760870400000)
    views = room.post("alice", "123456", "look", [
        Upload(PNG, "image/png", "cat.png"),
        Upload(b"GIF89a", "image/gif", "dog.gif"),
    ])
    refs = views[-1].attachments
    assert refs == ("123456_17608704000000.png", "123456_17608704000001.gif")
    assert views[-1].to_dict()["imagePaths"] == list(refs)

    path, content_type = resolve_attachment(config.pic_dir, refs[1])
    assert content_type == "image/gif"
    assert path.read_bytes() == b"GIF89a"


def test_resolve_attachment_rejects_bad_names(tmp_path: Path):
    for name in ("../revoked.json", "abc_1.png", "123_1.exe", ""):
        with pytest.raises(AttachmentError):
            resolve_attachment(tmp_path, name)
    with pytest.raises(FileNotFoundError):
        resolve_attachment(tmp_path, "123_1.PNG")


def test_revoke_requires_owner(room: ChatRoom):
    msg_id = room.post("alice", "111111", "mine")[-1].id
    with pytest.raises(NotMessageOwner) as info:
        room.revoke(msg_id, "mallory", "111111")
    assert info.value.status == 403
    with pytest.raises(NotMessageOwner):
        room.revoke(msg_id, "alice", "999999")
    assert room.revocations.is_revoked(msg_id) is False


def test_unknown_message_is_not_found(room: ChatRoom):
    with pytest.raises(MessageNotFound) as info:
        room.revoke("nope", "alice", "111111")
    assert info.value.status == 404
    with pytest.raises(MessageNotFound):
        room.react("nope", "👍", "alice", "111111")


def test_react_and_revoke_require_fields(room: ChatRoom):
    msg_id = room.post("alice", "111111", "x")[-1].id
    with pytest.raises(ChatRequestError, match="required"):
        room.react(msg_id, "", "alice", "111111")
    with pytest.raises(ChatRequestError, match="required"):
        room.revoke("", "alice", "111111")
    with pytest.raises(ChatRequestError, match="identity"):
        room.react(msg_id, "👍", "alice", "12")


def test_revoke_twice_keeps_single_entry(room: ChatRoom):
    msg_id = room.post("alice", "111111", "x")[-1].id
    room.revoke(msg_id, "alice", "111111")
    room.revoke(msg_id, "alice", "111111")
    assert room.revocations.revoked_ids() == {msg_id}


def test_serialized_writes_still_post(tmp_path: Path):
    room = ChatRoom(ChatConfig(base_dir=tmp_path / "chat", serialize_writes=True))
    room.post("alice", "111111", "one")
    views = room.post("alice", "111111", "two")
    assert [v.message.sequence for v in views] == [1, 2]
    assert room.sweep().removed == []


def test_serialized_posts_from_many_threads(tmp_path: Path):
    config = ChatConfig(base_dir=tmp_path / "chat", shard_capacity=5, serialize_writes=True)
    room = ChatRoom(config)
    with ThreadPoolExecutor(max_workers=8) as pool:
        stored = list(pool.map(
            lambda n: room.post_message(f"user{n}", f"{10000 + n}", f"hello {n}"),
            range(20),
        ))

    assert sorted(m.sequence for m in stored) == list(range(1, 21))
    assert len(room.messages()) == 20
    result = LogVerifier(room.log.shards, capacity=5).verify()
    assert result.is_valid, str(result)
    assert result.shards_checked == 4


def test_serialized_reactions_from_many_threads(tmp_path: Path):
    room = ChatRoom(ChatConfig(base_dir=tmp_path / "chat", serialize_writes=True))
    msg_id = room.post_message("alice", "111111", "vote here").id
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda n: room.react(msg_id, "👍", f"user{n}", f"{20000 + n}"), range(16)))

    assert [r.to_dict() for r in room.reactions.summarize(msg_id)] == [{"emoji": "👍", "count": 16}]


def test_unserialized_posts_can_lose_an_update(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    import chatlog.storage.log as log_module

    # hold both writers until each has read the same active shard
    both_loaded = threading.Barrier(2, timeout=10)
    real_write = log_module.write_json_atomic

    def racing_write(path, value):
        both_loaded.wait()
        real_write(path, value)

    monkeypatch.setattr(log_module, "write_json_atomic", racing_write)
    room = ChatRoom(ChatConfig(base_dir=tmp_path / "chat"))
    with ThreadPoolExecutor(max_workers=2) as pool:
        stored = list(pool.map(lambda n: room.post_message("alice", "111111", f"msg {n}"), range(2)))

    assert [m.sequence for m in stored] == [1, 1]
    survivors = room.messages()
    assert len(survivors) == 1
    assert survivors[0].id in {m.id for m in stored}


def test_sweep_on_post_removes_aged_shard(tmp_path: Path):
    config = ChatConfig(base_dir=tmp_path / "chat", shard_capacity=1, sweep_on_post=True)
    room = ChatRoom(config)
    room.post("alice", "111111", "old")
    old_shard = config.base_dir / "chat_01.json"
    stamp = time.time() - 3 * 24 * 3600
    os.utime(old_shard, (stamp, stamp))

    views = room.post("alice", "111111", "new")

    assert not old_shard.exists()
    assert (config.base_dir / "chat_02.json").exists()
    assert [v.text for v in views] == ["new"]


class BrokenStorage(StorageBackend):
    def append(self, message: Message) -> Message:
        raise OSError("disk full")

    def list(self, limit: int):
        return []


def test_failed_append_discards_saved_images(tmp_path: Path):
    config = ChatConfig(base_dir=tmp_path / "chat", attachment_mode="file")
    room = ChatRoom(config, storage=BrokenStorage())
    with pytest.raises(OSError, match="disk full"):
        room.post("alice", "123456", "look", [
            Upload(PNG, "image/png", "cat.png"),
            Upload(b"GIF89a", "image/gif", "dog.gif"),
        ])
    assert list(config.pic_dir.iterdir()) == []


def test_post_message_returns_stored_copy(room: ChatRoom):
    room.post("bob", "222222", "first")
    stored = room.post_message("alice", "111111", "second")
    assert stored.id == "id-2"
    assert stored.sequence == 2
    assert room.log.find("id-2") == stored


def test_validate_identity():
    author = validate_identity(" bob ", 12345)
    assert author.nickname == "bob"
    assert author.external_id == "12345"


def test_resolve_base_dir_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("CHATLOG_DIR", raising=False)
    monkeypatch.delenv("VERCEL", raising=False)
    monkeypatch.delenv("NOW_REGION", raising=False)
    monkeypatch.chdir(tmp_path)
    assert resolve_base_dir() == Path.cwd() / "chat"

    monkeypatch.setenv("VERCEL", "1")
    assert resolve_base_dir() == Path("/tmp/chat")

    monkeypatch.setenv("CHATLOG_DIR", str(tmp_path / "env"))
    assert resolve_base_dir() == (tmp_path / "env").resolve()
    assert resolve_base_dir(tmp_path / "flag") == (tmp_path / "flag").resolve()


def test_config_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CHATLOG_ATTACHMENT_MODE", "FILE")
    monkeypatch.setenv("CHATLOG_RETENTION_HOURS", "6")
    config = ChatConfig.from_env(tmp_path)
    assert config.attachment_mode == "file"
    assert config.retention.total_seconds() == 6 * 3600

    monkeypatch.setenv("CHATLOG_ATTACHMENT_MODE", "cloud")
    with pytest.raises(ValueError):
        ChatConfig.from_env(tmp_path)
