import io
from datetime import datetime, timedelta, timezone

from rtftpd.util import Bucket, BucketGuard, format_number, pretty_dump, to_lower


def test_bucket():
    bucket = Bucket(4)
    assert bucket.level() == 4

    g0 = bucket.acquire()
    assert bucket.level() == 3
    assert isinstance(g0, BucketGuard)

    g1 = bucket.acquire()
    assert bucket.level() == 2
    assert isinstance(g1, BucketGuard)

    with bucket.acquire() as g2:
        assert bucket.level() == 1
        assert isinstance(g2, BucketGuard)

        g3 = bucket.acquire()
        assert bucket.level() == 0
        assert isinstance(g3, BucketGuard)

        g4 = bucket.acquire()
        assert bucket.level() == 0
        assert g4 is None

        g3.release()
        assert bucket.level() == 1

        g5 = bucket.acquire()
        assert bucket.level() == 0
        assert isinstance(g5, BucketGuard)
        g5.release()

    assert bucket.level() == 2

    g1.release()
    g0.release()
    assert bucket.level() == 4


def test_bucket_guard_release_is_idempotent():
    bucket = Bucket(1)
    guard = bucket.acquire()
    guard.release()
    guard.release()
    assert bucket.level() == 1


def test_empty_bucket():
    assert Bucket(0).acquire() is None


def test_format_number():
    assert format_number(1234567) == "1_234_567"
    assert format_number(999) == "999"
    assert format_number(0) == "0"


def test_to_lower():
    assert to_lower(b"abc") == b"abc"
    assert to_lower(b"Abc") == b"abc"
    assert to_lower(b"012") == b"012"
    assert to_lower(b"\xc4BLKSIZE") == b"\xc4blksize"


def test_pretty_dump_none_and_int():
    assert pretty_dump(None) == "n/a"
    assert pretty_dump(42) == "42"


def test_pretty_dump_datetime():
    tm = datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=timezone.utc)
    assert pretty_dump(tm) == "1.500"


def test_pretty_dump_timedelta():
    assert pretty_dump(timedelta(milliseconds=1234)) == "1.234s"


def test_pretty_dump_bytes():
    assert pretty_dump(b"\"etag\"") == "\"etag\""


def test_pretty_dump_file():
    class Handle(io.BytesIO):
        def fileno(self):
            return 7

    assert pretty_dump(Handle()) == "fd=7"