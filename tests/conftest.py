import pytest
import redis

MUTATING = {"set", "delete", "unlink", "expire", "persist", "hset", "lpush", "sadd", "zadd", "flushdb"}


class FakeRedis:
    """In-memory stand-in for the redis-py calls the exporter makes.

    ``data`` maps key -> (type name, value). ``pages`` scripts the SCAN
    replies as (next cursor, keys); without it every key comes back in one
    page with cursor 0. Every call is recorded in ``commands``.
    """

    def __init__(self, data=None, pages=None, fail_on=None):
        self.data = dict(data or {})
        self.pages = list(pages) if pages is not None else [(0, list(self.data))]
        self.fail_on = fail_on or {}
        self.commands = []
        self.closed = False

    def _call(self, name, *args):
        self.commands.append((name,) + args)
        error = self.fail_on.get(name)
        if error is not None:
            raise error

    def ping(self):
        self._call("ping")
        return True

    def close(self):
        self.closed = True
        self._call("close")

    def scan(self, cursor=0, count=None):
        self._call("scan", cursor, count)
        scans = sum(1 for c in self.commands if c[0] == "scan")
        return self.pages[scans - 1]

    def type(self, key):
        self._call("type", key)
        return self.data.get(key, ("none", None))[0]

    def _value(self, key):
        return self.data.get(key, (None, None))[1]

    def get(self, key):
        self._call("get", key)
        return self._value(key)

    def hgetall(self, key):
        self._call("hgetall", key)
        return dict(self._value(key) or {})

    def lrange(self, key, start, end):
        self._call("lrange", key, start, end)
        return list(self._value(key) or [])

    def smembers(self, key):
        self._call("smembers", key)
        return set(self._value(key) or [])

    def zrange(self, key, start, end, withscores=False):
        self._call("zrange", key, start, end, withscores)
        pairs = sorted((self._value(key) or {}).items(), key=lambda item: item[1])
        return [(member, float(score)) for member, score in pairs]

    def __getattr__(self, name):
        if name in MUTATING:
            def mutate(*args, **kwargs):
                self.commands.append((name,) + args)
            return mutate
        raise AttributeError(name)


@pytest.fixture
def sample_data():
    return {
        "greeting": ("string", "hello"),
        "empty": ("string", ""),
        "user:1": ("hash", {"a": "1", "b": "2"}),
        "queue": ("list", ["x", "y", "x"]),
        "tags": ("set", {"red", "green"}),
        "ranking": ("zset", {"alice": 1.5, "bob": 0, "carol": 10}),
        "events": ("stream", None),
    }


@pytest.fixture
def fake_redis(sample_data):
    return FakeRedis(sample_data)


@pytest.fixture
def connection_refused():
    return redis.exceptions.ConnectionError("Error 111 connecting to 127.0.0.1:6379. Connection refused.")
