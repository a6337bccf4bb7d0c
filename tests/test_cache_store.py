"""Cache store: populate-on-miss, TTL, tag invalidation and both backends."""

import json

import pytest

from chessclub.config import Config
from chessclub.services.cache_store import CacheStore, InMemoryCacheBackend, RedisCacheBackend
from chessclub.utils.exceptions import CacheError
from chessclub.utils.redis_utils import RedisUtils

from conftest import FakeClock


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def setex(self, key, ttl, value):
        self.ops.append(('setex', key, ttl, value))

    def sadd(self, key, member):
        self.ops.append(('sadd', key, member))

    def expire(self, key, ttl):
        self.ops.append(('expire', key, ttl))

    async def execute(self):
        for op in self.ops:
            if op[0] == 'setex':
                self.client.values[op[1]] = op[3]
                self.client.ttls[op[1]] = op[2]
            elif op[0] == 'sadd':
                self.client.sets.setdefault(op[1], set()).add(op[2])
            else:
                self.client.ttls[op[1]] = op[2]
        return [True] * len(self.ops)


class FakeRedis:
    """The subset of redis.asyncio.Redis the backend uses, with decoded responses."""

    def __init__(self):
        self.values = {}
        self.sets = {}
        self.ttls = {}
        self.fail_reads = False

    def pipeline(self):
        return FakePipeline(self)

    async def get(self, key):
        if self.fail_reads:
            raise ConnectionError("redis down")
        return self.values.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.sets.pop(key, None) is not None)
        return removed

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def flushdb(self):
        self.values.clear()
        self.sets.clear()


class Producer:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


@pytest.fixture
def store(clock):
    return CacheStore(InMemoryCacheBackend(max_entries=10, stale_retention=600, clock=clock), clock=clock)


async def test_populates_on_miss_and_serves_hits(store):
    producer = Producer({'a': 1})

    assert await store.get_or_populate('k', 60, ['t'], producer) == {'a': 1}
    assert await store.get_or_populate('k', 60, ['t'], producer) == {'a': 1}
    assert producer.calls == 1


async def test_fetch_reports_hits(store):
    producer = Producer([1, 2])
    assert await store.fetch('k', 60, [], producer) == ([1, 2], False)
    assert await store.fetch('k', 60, [], producer) == ([1, 2], True)


async def test_expired_entries_repopulate(store, clock):
    producer = Producer('v')
    await store.get_or_populate('k', 60, [], producer)
    clock.advance(61)
    await store.get_or_populate('k', 60, [], producer)

    assert producer.calls == 2


async def test_expired_entries_remain_available_as_stale(store, clock):
    await store.set('k', 'old', 60)
    clock.advance(120)

    assert await store.lookup('k') is None
    assert (await store.lookup('k', allow_stale=True)).value == 'old'


async def test_entries_past_retention_are_cleaned_up(store, clock):
    await store.set('k', 'old', 60)
    clock.advance(60 + 601)
    await store.set('other', 'new', 60)

    assert await store.lookup('k', allow_stale=True) is None


async def test_invalidate_by_tags_only_removes_tagged_entries(store):
    await store.set('rankings:all', [1], 3600, ['rankings', 'ratings'])
    await store.set('standings:x', [2], 600, ['ladder', 'rankings'])
    await store.set('members:all', [3], 14400, ['members'])

    removed = await store.invalidate_by_tags(['rankings'])

    assert removed == ['rankings:all', 'standings:x']
    assert await store.lookup('rankings:all') is None
    assert await store.lookup('standings:x') is None
    assert (await store.lookup('members:all')).value == [3]


async def test_invalidate_key(store):
    await store.set('k', 1, 60, ['t'])
    assert await store.invalidate_key('k') is True
    assert await store.invalidate_key('k') is False
    assert await store.invalidate_by_tags(['t']) == []


async def test_injected_empty_backend_is_kept(clock):
    backend = InMemoryCacheBackend(max_entries=3, stale_retention=0, clock=clock)
    store = CacheStore(backend, clock=clock)

    await store.set('k', 1, 60)

    assert store.backend is backend
    assert len(backend) == 1


async def test_size_limit_evicts_oldest(clock):
    store = CacheStore(InMemoryCacheBackend(max_entries=3, stale_retention=0, clock=clock), clock=clock)
    for index in range(5):
        await store.set(f'k{index}', index, 60)
        clock.advance(1)

    assert len(store.backend) == 3
    assert await store.lookup('k0') is None
    assert (await store.lookup('k4')).value == 4


async def test_backend_read_failure_falls_through_to_producer():
    redis = FakeRedis()
    redis.fail_reads = True
    store = CacheStore(RedisCacheBackend(redis, stale_retention=0))
    producer = Producer('fresh')

    assert await store.get_or_populate('k', 60, [], producer) == 'fresh'
    assert producer.calls == 1


async def test_invalidation_failure_raises_cache_error(store, monkeypatch):
    async def broken(tags):
        raise ConnectionError("down")

    monkeypatch.setattr(store.backend, 'delete_tagged', broken)
    with pytest.raises(CacheError):
        await store.invalidate_by_tags(['rankings'])


async def test_redis_backend_envelope_and_tag_sets():
    clock = FakeClock()
    redis = FakeRedis()
    store = CacheStore(RedisCacheBackend(redis, stale_retention=100, clock=clock), clock=clock)

    await store.set('rankings:all', [{'id': 'alice'}], 3600, ['rankings'])

    envelope = json.loads(redis.values['rankings:all'])
    assert envelope['value'] == [{'id': 'alice'}]
    assert envelope['tags'] == ['rankings']
    assert redis.ttls['rankings:all'] == 3700
    assert redis.sets['tag:rankings'] == {'rankings:all'}
    assert redis.ttls['tag:rankings'] == 86400

    assert (await store.lookup('rankings:all')).value == [{'id': 'alice'}]
    assert await store.invalidate_by_tags(['rankings']) == ['rankings:all']
    assert 'rankings:all' not in redis.values
    assert 'tag:rankings' not in redis.sets


@pytest.mark.parametrize('url, debug, accepted', [
    ('rediss://user:pw@cache.example.com:6380', False, True),
    ('rediss://cache.example.com:6380', False, False),
    ('redis://cache.example.com:6379', False, False),
    ('redis://localhost:6379', True, True),
    ('redis://cache.example.com:6379', True, True),
])
def test_redis_url_validation(url, debug, accepted):
    assert (RedisUtils.url_problem(url, debug) is None) is accepted


async def test_create_falls_back_to_memory_without_redis_url(monkeypatch):
    monkeypatch.setattr(Config, 'REDIS_URL', None)
    store = await CacheStore.create()
    assert isinstance(store.backend, InMemoryCacheBackend)
