# rtftpd

A TFTP server for netbooting and firmware delivery. It serves read requests
from its current working directory, supports option negotiation (`blksize`,
`windowsize`, `timeout`, `tsize`) and can fetch files from HTTP(S) servers,
caching the downloads in temporary files.

## Installation

    pip install .

For running the tests:

    pip install .[test]
    pytest

## Running

    rtftpd --port 69 --listen ::

Every request is served on its own UDP socket bound to the address the request
was sent to. Negotiated block sizes are capped at 1500 bytes and window sizes
at 64 blocks.

| Option | Meaning |
| --- | --- |
| `-p`, `--port` | UDP port to listen on (default 69) |
| `-l`, `--listen IP` | address to listen on (default `::`) |
| `-m`, `--max-connections NUM` | maximum number of concurrent transfers (default 64); further clients get a "too much clients" error |
| `-t`, `--timeout SECONDS` | timeout during transfers (default 3); a client's `timeout` option overrides it |
| `-f`, `--fallback URI` | prefix put before the requested path when the file does not exist locally; a URI prefix makes the file be fetched over HTTP, anything else is taken as a local path |
| `-C`, `--cache-dir DIR` | directory for cached downloads (default: the system temporary directory) |
| `-L`, `--log-format FMT` | `default`, `compact`, `full` or `json`; `default` means `compact` with `--systemd` and `full` otherwise |
| `-s`, `--systemd` | use the socket passed by systemd socket activation (`LISTEN_PID`/`LISTEN_FDS`, descriptor 3) |
| `--disable-proxy` | never fetch files over HTTP |
| `--no-rfc2347` | ignore option negotiation |
| `--wrq-devnull` | accept write requests and discard their data |

The log level is taken from the environment variable `RTFTPD_LOG` (for example
`RTFTPD_LOG=info`); it defaults to `ERROR`. Each finished transfer is logged
with its size, retries, timeouts, duration and throughput.

## Proxying over HTTP

A symbolic link whose target looks like a URI (for example
`http://boot.example.com/images/kernel`) makes the server fetch the file over
HTTP instead of reading it from disk. Path components after the link are
appended to the URI. The scheme may carry modifiers:

- `http+nocache://...` does not reuse a cached copy but downloads afresh,
- `http+nocompress://...` requests the file with `Accept-Encoding: identity`,

and they can be combined, as in `https+nocache+nocompress://...`.

Cached files are revalidated with `If-Modified-Since`, `If-None-Match` and
`Cache-Control: max-age` request headers; their lifetime follows the server's
`Cache-Control` and `Expires` headers. Answers other than `200` and `304` are
reported to the client as errors. A garbage collector runs every 30 seconds,
drops entries older than one hour and keeps at most 50 of them.

Sending `SIGUSR1` to the server prints the cache contents; `SIGUSR2` empties
the cache.

## Library use

The protocol pieces can be used on their own:

- `rtftpd.tftp.datagram.parse_datagram` decodes TFTP packets,
- `rtftpd.tftp.request.parse_request` parses read and write requests,
- `rtftpd.tftp.xfer.Xfer` manages the window of data blocks,
- `rtftpd.fetcher.builder.lookup_path` maps a requested name to a local path
  or a URI,
- `rtftpd.proxy.cache_info.CacheInfo` derives freshness from HTTP headers.

## Limitations

- Only the `octet` (or `binary`) transfer mode is implemented; `netascii` and
  `mail` requests are refused.
- Uploaded files are never stored. Write requests are refused, or, with
  `--wrq-devnull`, acknowledged with a window size of 1 and their data thrown
  away.
- Requested names containing `..` are rejected.