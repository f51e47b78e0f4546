import pytest
import redis

from cloner.errors import FatalStartupError, ItemCleanupError, RunAbortError
from cloner.items import MediaItem
from cloner.janitor import LocalArtifactJanitor
from cloner.run_guard import LocalRunGuard, RedisRunGuard


def _item(name, file_id=1):
    item = MediaItem(file_id=file_id, post_id=file_id * 10, external_url="http://img.example.com/x")
    item.local_filename = name
    return item


def test_cleanup_removes_staged_file(tmp_path):
    (tmp_path / "a.png").write_bytes(b"x")
    LocalArtifactJanitor(tmp_path).cleanup(_item("a.png"))
    assert not (tmp_path / "a.png").exists()


def test_cleanup_missing_file_raises(tmp_path):
    with pytest.raises(ItemCleanupError):
        LocalArtifactJanitor(tmp_path).cleanup(_item("missing.png"))


def test_cleanup_all_continues_past_failures(tmp_path):
    (tmp_path / "a.png").write_bytes(b"x")
    (tmp_path / "c.png").write_bytes(b"x")
    items = [_item("a.png", 1), _item("missing.png", 2), _item("c.png", 3)]

    assert LocalArtifactJanitor(tmp_path).cleanup_all(items) == 2
    assert list(tmp_path.iterdir()) == []


def test_local_guard_allows_one_run_at_a_time():
    guard = LocalRunGuard()
    assert guard.acquire() is True
    assert guard.acquire() is False
    guard.release()
    assert guard.acquire() is True


# Minimal stand-in for the parts of redis-py the guard touches.
class FakeRedisLock:
    def __init__(self, store, name):
        self.store = store
        self.name = name
        self.owned = False

    def acquire(self, blocking=True):
        if self.name in self.store:
            return False
        self.store[self.name] = "token"
        self.owned = True
        return True

    def release(self):
        if not self.owned:
            raise redis.exceptions.LockError("Cannot release an unlocked lock")
        del self.store[self.name]
        self.owned = False


class FakeRedis:
    def __init__(self, store=None, reachable=True):
        self.store = {} if store is None else store
        self.reachable = reachable
        self.lock_kwargs = None

    def ping(self):
        if not self.reachable:
            raise redis.exceptions.ConnectionError("Connection refused")
        return True

    def lock(self, name, **kwargs):
        self.lock_kwargs = kwargs
        return FakeRedisLock(self.store, name)


def test_redis_guard_shares_lock_between_processes():
    shared = {}
    first = RedisRunGuard(key="cloner:lock", ttl_seconds=60, client=FakeRedis(shared))
    second = RedisRunGuard(key="cloner:lock", ttl_seconds=60, client=FakeRedis(shared))

    assert first.acquire() is True
    assert second.acquire() is False
    first.release()
    assert second.acquire() is True
    assert first.redis_client.lock_kwargs["timeout"] == 60


def test_redis_guard_release_after_expiry_is_logged_not_raised():
    guard = RedisRunGuard(client=FakeRedis())
    guard.release()


def test_redis_guard_unreachable_is_fatal():
    with pytest.raises(FatalStartupError):
        RedisRunGuard(client=FakeRedis(reachable=False))


def test_redis_guard_acquire_error_aborts_run():
    client = FakeRedis()
    guard = RedisRunGuard(client=client)

    def broken(blocking=True):
        raise redis.exceptions.ConnectionError("gone")

    guard._lock.acquire = broken
    with pytest.raises(RunAbortError):
        guard.acquire()
