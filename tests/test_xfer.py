import pytest

from rtftpd.errors import ProtocolError
from rtftpd.fetcher.sources import FileFetcher, MemoryFetcher
from rtftpd.tftp.datagram import DataPacket
from rtftpd.tftp.sequence_id import SequenceId
from rtftpd.tftp.xfer import Xfer

EXPECTED = {
    23: b"\x00\x01",
    24: b"\x02\x03",
    25: b"\x04\x05",
    26: b"\x06\x07",
    27: b"\x08\x09",
    28: b"\x0a\x0b",
    29: b"\x0c\x0d",
    30: b"\x0e\x0f",
    31: b"",
    50: b"\x00\x01",
    51: b"\x02",
}


def verify_data(xfer, start, count):
    packets = list(xfer)
    for idx, packet in enumerate(packets):
        assert isinstance(packet, DataPacket)
        assert packet.seq == start + idx
        assert packet.data == EXPECTED[packet.seq.value]
    assert len(packets) == count


@pytest.mark.asyncio
async def test_window_sequence():
    f = MemoryFetcher(bytes(range(16)))
    xfer = Xfer(f, 2, 3)
    assert not xfer.is_eof()

    seq = SequenceId(23)
    assert await xfer.fill_window(seq, f) == 0
    verify_data(xfer, seq, 3)
    assert not xfer.is_eof()

    # last buffer of previous transfer was lost
    seq = seq + 2  # 25
    assert await xfer.fill_window(seq, f) == 1
    verify_data(xfer, seq, 3)
    assert not xfer.is_eof()

    seq = seq - 1  # 24
    with pytest.raises(ProtocolError):
        await xfer.fill_window(seq, f)
    seq = seq + 1  # 25
    verify_data(xfer, seq, 3)
    assert not xfer.is_eof()

    seq = seq + 4  # 29
    with pytest.raises(ProtocolError):
        await xfer.fill_window(seq, f)
    seq = seq - 4  # 25
    verify_data(xfer, seq, 3)
    assert not xfer.is_eof()

    seq = seq + 3  # 28
    assert await xfer.fill_window(seq, f) == 0
    verify_data(xfer, seq, 3)
    assert not xfer.is_eof()

    seq = seq + 2  # 30
    await xfer.fill_window(seq, f)
    verify_data(xfer, seq, 2)
    assert not xfer.is_eof()

    seq = seq + 2  # 32
    await xfer.fill_window(seq, f)
    verify_data(xfer, seq, 0)
    assert xfer.is_eof()


@pytest.mark.asyncio
async def test_short_last_block():
    f = MemoryFetcher(b"\x00\x01\x02")
    xfer = Xfer(f, 2, 3)
    assert not xfer.is_eof()

    seq = SequenceId(50)
    await xfer.fill_window(seq, f)
    verify_data(xfer, seq, 2)
    assert not xfer.is_eof()

    seq = seq + 1  # 51
    await xfer.fill_window(seq, f)
    verify_data(xfer, seq, 1)
    assert not xfer.is_eof()

    seq = seq + 1  # 52
    await xfer.fill_window(seq, f)
    verify_data(xfer, seq, 0)
    assert xfer.is_eof()


@pytest.mark.asyncio
async def test_file_fetcher_blocks(tmp_path):
    path = tmp_path / "data"
    content = b"abcdefg"
    path.write_bytes(content)

    f = FileFetcher(path)
    await f.open()
    xfer = Xfer(f, 3, 2)

    seq = SequenceId(1)
    await xfer.fill_window(seq, f)
    assert [p.data for p in xfer] == [b"abc", b"def"]

    seq = seq + 2
    await xfer.fill_window(seq, f)
    assert [p.data for p in xfer] == [b"g"]
    assert [p.seq for p in xfer] == [seq]

    await xfer.fill_window(seq + 1, f)
    assert list(xfer) == []
    assert xfer.is_eof()
    f.close()


@pytest.mark.asyncio
async def test_wraps_sequence_numbers():
    f = MemoryFetcher(b"0123")
    xfer = Xfer(f, 2, 4)
    start = SequenceId(0xFFFF)
    await xfer.fill_window(start, f)
    assert [p.seq.value for p in xfer] == [0xFFFF, 0, 1]


@pytest.mark.parametrize("window", [0, 0xFFFF])
def test_invalid_window_size(window):
    with pytest.raises(ValueError):
        Xfer(MemoryFetcher(b""), 512, window)