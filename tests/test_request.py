from pathlib import Path

import pytest

from rtftpd.errors import RequestError, RequestErrorKind as E
from rtftpd.tftp.request import (
    Direction,
    Mode,
    Request,
    parse_mode,
    parse_ranged,
    parse_request,
)


@pytest.mark.parametrize(
    "data, lo, hi, expected",
    [
        (b"000", 0, 10, 0),
        (b"001", 0, 10, 1),
        (b"10", 0, 10, 10),
        (b"010", 0, 10, 10),
        (b"200", 1, 1000, 200),
        (b"18446744073709551615", 1, 18446744073709551615, 18446744073709551615),
    ],
)
def test_range_ok(data, lo, hi, expected):
    assert parse_ranged(data, lo, hi) == expected


@pytest.mark.parametrize(
    "data, lo, hi",
    [
        (b"011", 0, 10),
        (b"0", 1, 10),
        (b"300", 1, 0xFF),
        (b"18446744073709551616", 1, 18446744073709551615),
        (b"184467440737095516150", 1, 18446744073709551615),
    ],
)
def test_range_out_of_range(data, lo, hi):
    with pytest.raises(RequestError) as info:
        parse_ranged(data, lo, hi)
    assert info.value.kind is E.NUMBER_OUT_OF_RANGE


def test_range_bad_digit():
    with pytest.raises(RequestError) as info:
        parse_ranged(b"1x", 0, 10)
    assert info.value.kind is E.BAD_DIGIT
    assert info.value.value == ord("x")


@pytest.mark.parametrize(
    "name, mode",
    [
        (b"octet", Mode.OCTET),
        (b"OCTET", Mode.OCTET),
        (b"netascii", Mode.NETASCII),
        (b"binary", Mode.OCTET),
        (b"mail", Mode.MAIL),
    ],
)
def test_parse_mode(name, mode):
    assert parse_mode(name) is mode


def test_parse_mode_bad():
    with pytest.raises(RequestError) as info:
        parse_mode(b"XXX")
    assert info.value.kind is E.BAD_MODE


def test_simple_request():
    req = parse_request(b"file\x00octet\x00", Direction.READ)
    assert req.filename == b"file"
    assert req.mode is Mode.OCTET
    assert not req.has_options()


@pytest.mark.parametrize(
    "data, kind",
    [
        (b"file\x00XXX\x00", E.BAD_MODE),
        (b"file\x00octet", E.MISSING_ZERO),
        (b"file\x00", E.MISSING_MODE),
        (b"file", E.MISSING_ZERO),
        (b"", E.TOO_SHORT),
        (b"\x00octet\x00", E.MISSING_FILENAME),
        (b"file\x00octet\x00blksize\x00", E.MISSING_ARGUMENT),
        (b"file\x00octet\x00tsize\x0042\x00", E.NUMBER_OUT_OF_RANGE),
        (b"file\x00octet\x00windowsize\x000\x00", E.NUMBER_OUT_OF_RANGE),
        (b"file\x00octet\x00blksize\x007\x00", E.NUMBER_OUT_OF_RANGE),
    ],
)
def test_bad_read_requests(data, kind):
    with pytest.raises(RequestError) as info:
        parse_request(data, Direction.READ)
    assert info.value.kind is kind


def test_read_request_with_options():
    req = parse_request(
        b"file\x00octet\x00"
        b"blksize\x002000\x00"
        b"unsupported\x001234\x00"
        b"timeout\x005\x00"
        b"tsize\x000\x00"
        b"windowsize\x0064\x00",
        Direction.READ,
    )
    assert req.path() == Path("file")
    assert req.mode is Mode.OCTET
    assert req.block_size == 2000
    assert req.timeout == 5
    assert req.tsize == 0
    assert req.window_size == 64
    assert req.has_options()


def test_write_request_tsize():
    req = parse_request(b"file\x00octet\x00tsize\x0042\x00", Direction.WRITE)
    assert req.path() == Path("file")
    assert req.mode is Mode.OCTET
    assert req.tsize == 42


def test_option_names_are_case_insensitive():
    req = parse_request(b"file\x00octet\x00BlkSize\x00512\x00", Direction.READ)
    assert req.block_size == 512


def test_request_path_and_options():
    req = Request(filename=b"dir/file", mode=Mode.OCTET)
    assert req.path() == Path("dir/file")
    assert not req.has_options()
    req.window_size = 4
    assert req.has_options()