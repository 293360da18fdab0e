from datetime import timedelta

import pytest

from rtftpd.errors import StringConversion
from rtftpd.proxy.headers import (
    CacheControl,
    CacheControlKind as K,
    as_u64,
    duration_from_seconds,
    iter_cache_control,
    parse_cache_control,
    split_header_items,
)


def test_multi_header_split():
    values = [
        "0",
        "10,11,12",
        ",,,20,,,  21  ,,,  22,,,23  ,,,",
        "30=1,31=, 32=2,33=3 ,34=",
    ]
    assert list(split_header_items(values)) == [
        (b"0", None),
        (b"10", None),
        (b"11", None),
        (b"12", None),
        (b"20", None),
        (b"21", None),
        (b"22", None),
        (b"23", None),
        (b"30", b"1"),
        (b"31", b""),
        (b"32", b"2"),
        (b"33", b"3"),
        (b"34", b""),
    ]


def test_multi_header_numeric_values():
    values = [b"30=1,31=, 32=2,33=3 ,34="]
    results = []
    for key, value in split_header_items(values):
        try:
            results.append((as_u64(key), None if value is None else as_u64(value)))
        except StringConversion:
            results.append("err")
    # empty values parse as 0 with as_u64
    assert results == [(30, 1), (31, 0), (32, 2), (33, 3), (34, 0)]


def test_split_empty_and_blank_values():
    assert list(split_header_items(["", " , ,", "\t"])) == []


def test_cache_control_sequence():
    values = [
        "max-age=23",
        "s-maxage=42,no-cache",
        "must-ReValidate",
        "PROXY-revalidate",
        "private,PUBLIC",
        "immutable",
        "xxx-unsupported",
    ]
    assert list(iter_cache_control(values)) == [
        CacheControl(K.MAX_AGE, timedelta(seconds=23)),
        CacheControl(K.S_MAXAGE, timedelta(seconds=42)),
        CacheControl(K.NO_CACHE),
        CacheControl(K.MUST_REVALIDATE),
        CacheControl(K.PROXY_REVALIDATE),
        CacheControl(K.PRIVATE),
        CacheControl(K.PUBLIC),
        CacheControl(K.IMMUTABLE),
        CacheControl(K.OTHER),
    ]


def test_cache_control_missing_value_raises():
    with pytest.raises(StringConversion):
        parse_cache_control(b"max-age", None)


def test_cache_control_bad_value_raises():
    with pytest.raises(StringConversion):
        parse_cache_control("s-maxage", "12x")


def test_iter_cache_control_skips_bad_directives():
    assert list(iter_cache_control(["max-age, public, max-age=x"])) == [
        CacheControl(K.PUBLIC)
    ]


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"", 0),
        (b"0", 0),
        (b"012", 12),
        ("18446744073709551615", 18446744073709551615),
    ],
)
def test_as_u64(data, expected):
    assert as_u64(data) == expected


@pytest.mark.parametrize(
    "data", [b"18446744073709551616", b"184467440737095516150", b"1a", b"-1", b" 1"]
)
def test_as_u64_errors(data):
    with pytest.raises(StringConversion):
        as_u64(data)


def test_duration_from_seconds():
    assert duration_from_seconds(b"23") == timedelta(seconds=23)
    with pytest.raises(StringConversion):
        duration_from_seconds(b"18446744073709551615")