"""Parsers for the raw output of socket and process introspection tools.

Every ``parse_*_line`` function takes one line of a single query's output and
returns a PortRecord, or None when the line carries no listening socket
(headers, blank lines, short lines, other states, malformed ports). A bad line
is never an error; the caller simply moves on to the next one.

Supported sources:
- ``ss -tlnp -H`` / ``ss -ulnp -H`` (Linux)
- ``/proc/net/{tcp,tcp6,udp,udp6}`` pseudo-tables (Linux fallback)
- ``lsof -i -P -n`` (macOS)
- ``netstat -ano`` plus ``tasklist /FO CSV /NH`` (Windows)
"""

import csv
import ipaddress
import re
from typing import Callable

from unbind.models import LISTEN_STATE, UNKNOWN_PROCESS, PortRecord, Protocol

WILDCARD_ADDRESS = "0.0.0.0"
LISTEN_TOKENS = {"LISTEN", "LISTENING"}
PROC_LISTEN_STATE = "0A"

# Minimum whitespace-separated columns per layout
SS_MIN_FIELDS = 5
LSOF_MIN_FIELDS = 9
NETSTAT_TCP_MIN_FIELDS = 5
NETSTAT_UDP_MIN_FIELDS = 4
PROC_NET_MIN_FIELDS = 10

_DECIMAL_PORT = re.compile(r"^[0-9]+$")
_HEX_PORT = re.compile(r"^[0-9A-Fa-f]{4}$")
_USERS_NAME = re.compile(r'\(\("([^"]*)"')
_USERS_PID = re.compile(r"pid=([0-9]+)")

# Resolves a socket inode to (pid, process name)
InodeLookup = Callable[[int], tuple[int, str]]


# --- Address helpers ---


def split_address_port(token: str) -> tuple[str, str] | None:
    """Split an ``address:port`` token into its two substrings.

    Bracketed IPv6 (``[::1]:443``) splits right after the closing bracket;
    everything else splits at the last colon. The substrings are returned
    unchanged, so ``address + ":" + port`` reproduces the input.
    """
    bracket_pos = token.rfind("]:")
    if bracket_pos != -1:
        return token[: bracket_pos + 1], token[bracket_pos + 2 :]

    colon_pos = token.rfind(":")
    if colon_pos == -1:
        return None
    return token[:colon_pos], token[colon_pos + 1 :]


def normalize_address(address: str) -> str:
    """Map the wildcard token to 0.0.0.0; leave everything else alone."""
    if address == "*":
        return WILDCARD_ADDRESS
    return address


def parse_port(text: str) -> int | None:
    """Parse a decimal port, None unless it fits in 16 bits."""
    if not _DECIMAL_PORT.match(text):
        return None
    port = int(text)
    return port if port <= 0xFFFF else None


def parse_hex_port(text: str) -> int | None:
    """Parse the 4-hex-digit port of a /proc/net table."""
    if not _HEX_PORT.match(text):
        return None
    return int(text, 16)


def parse_address_port(token: str) -> tuple[str, int] | None:
    """Split and validate an ``address:port`` token.

    Returns the normalized address and the numeric port, or None when the
    token has no port or the port does not parse.
    """
    parts = split_address_port(token)
    if parts is None:
        return None
    address, port_text = parts
    port = parse_port(port_text)
    if port is None:
        return None
    return normalize_address(address), port


def decode_hex_address(hex_ip: str) -> str | None:
    """Decode a /proc/net address (host byte order, 32-bit words).

    IPv4 comes back dotted-quad, IPv6 bracketed (``[::]``, ``[::1]``).
    """
    try:
        raw = bytes.fromhex(hex_ip)
    except ValueError:
        return None

    if len(raw) == 4:
        return str(ipaddress.IPv4Address(raw[::-1]))
    if len(raw) == 16:
        # Each 32-bit word is stored little-endian
        swapped = b"".join(raw[i : i + 4][::-1] for i in range(0, 16, 4))
        return f"[{ipaddress.IPv6Address(swapped).compressed}]"
    return None


# --- ss (Linux) ---


def parse_users_field(field: str) -> tuple[int, str]:
    """Extract the first owner from ``users:(("name",pid=NUM,fd=NUM),...)``.

    Missing pieces fall back to pid 0 and ``"unknown"``.
    """
    name_match = _USERS_NAME.search(field)
    pid_match = _USERS_PID.search(field)
    name = name_match.group(1) if name_match else UNKNOWN_PROCESS
    pid = int(pid_match.group(1)) if pid_match else 0
    if pid > 0xFFFFFFFF:
        pid = 0
    return pid, name


def parse_ss_line(line: str, protocol: Protocol = Protocol.TCP) -> PortRecord | None:
    """Parse one line of ``ss -lnp -H`` output.

    Format: ``LISTEN 0 4096 0.0.0.0:22 0.0.0.0:* users:(("sshd",pid=1234,fd=3))``

    ss reports bound UDP sockets as ``UNCONN``; in the UDP pass that counts
    as listening.
    """
    parts = line.split()
    if len(parts) < SS_MIN_FIELDS:
        return None

    state = parts[0].upper()
    if state not in LISTEN_TOKENS and not (protocol is Protocol.UDP and state == "UNCONN"):
        return None

    parsed = parse_address_port(parts[3])
    if parsed is None:
        return None
    address, port = parsed

    if len(parts) > SS_MIN_FIELDS:
        pid, process_name = parse_users_field(" ".join(parts[SS_MIN_FIELDS:]))
    else:
        pid, process_name = 0, UNKNOWN_PROCESS

    return PortRecord(
        port=port,
        pid=pid,
        process_name=process_name,
        protocol=protocol,
        local_address=address,
        state=LISTEN_STATE,
    )


# --- /proc/net pseudo-tables (Linux fallback) ---


def parse_proc_net_line(
    line: str,
    protocol: Protocol,
    resolve_inode: InodeLookup,
) -> PortRecord | None:
    """Parse one row of /proc/net/tcp (or tcp6, udp, udp6).

    Format: ``0: 00000000:0BB8 00000000:0000 0A ... uid timeout inode ...``

    Only rows in state 0A (TCP_LISTEN) are kept. The owner is found through
    the socket inode in column 10.
    """
    parts = line.split()
    if len(parts) < PROC_NET_MIN_FIELDS:
        return None

    if parts[3] != PROC_LISTEN_STATE:
        return None

    addr_parts = parts[1].split(":")
    if len(addr_parts) != 2:
        return None
    hex_ip, hex_port = addr_parts

    port = parse_hex_port(hex_port)
    if port is None:
        return None

    address = decode_hex_address(hex_ip)
    if address is None:
        return None

    inode_text = parts[9]
    if not inode_text.isascii() or not inode_text.isdigit():
        return None

    pid, process_name = resolve_inode(int(inode_text))

    return PortRecord(
        port=port,
        pid=pid,
        process_name=process_name,
        protocol=protocol,
        local_address=address,
        state=LISTEN_STATE,
    )


# --- lsof (macOS) ---


def parse_lsof_line(line: str, protocol: Protocol = Protocol.TCP) -> PortRecord | None:
    """Parse one line of ``lsof -i -P -n`` output.

    Format: ``COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME [(STATE)]``
    Example: ``node 1234 user 22u IPv4 0x... 0t0 TCP *:3000 (LISTEN)``

    COMMAND and PID are always present in this layout, so a PID column that
    is not a number rejects the line (this also drops the header).
    """
    parts = line.split()
    if len(parts) < LSOF_MIN_FIELDS:
        return None

    process_name = parts[0]
    pid_text = parts[1]
    if not pid_text.isascii() or not pid_text.isdigit():
        return None
    pid = int(pid_text)

    last = parts[-1]
    if last.startswith("(") and last.endswith(")"):
        state = last[1:-1].upper()
        if state not in LISTEN_TOKENS:
            return None
        name_field = parts[-2]
    else:
        name_field = last

    # Connected sockets show "local->remote"
    if "->" in name_field:
        return None

    parsed = parse_address_port(name_field)
    if parsed is None:
        return None
    address, port = parsed

    return PortRecord(
        port=port,
        pid=pid,
        process_name=process_name,
        protocol=protocol,
        local_address=address,
        state=LISTEN_STATE,
    )


# --- netstat / tasklist (Windows) ---


def parse_tasklist_csv(text: str) -> dict[int, str]:
    """Build a PID→image name table from ``tasklist /FO CSV /NH``.

    Format: ``"process.exe","1234","Console","1","10,240 K"``
    """
    names: dict[int, str] = {}
    for row in csv.reader(text.splitlines()):
        if len(row) < 2:
            continue
        pid_text = row[1].strip()
        if not pid_text.isascii() or not pid_text.isdigit():
            continue
        names[int(pid_text)] = row[0].strip()
    return names


def parse_netstat_line(
    line: str,
    protocol: Protocol,
    pid_names: dict[int, str],
) -> PortRecord | None:
    """Parse one line of ``netstat -ano -p <proto>`` output.

    TCP: ``TCP    0.0.0.0:3000    0.0.0.0:0    LISTENING    1234``
    UDP: ``UDP    0.0.0.0:5353    *:*                       4321``

    UDP rows have no state column; any bound UDP socket counts as listening.
    A PID missing from ``pid_names`` keeps its number and is named "unknown".
    """
    line = line.strip()
    if not line or line.startswith("Proto") or line.startswith("Active"):
        return None

    parts = line.split()
    kind = parts[0].upper()

    if kind == "TCP":
        if len(parts) < NETSTAT_TCP_MIN_FIELDS:
            return None
        if parts[3].upper() not in LISTEN_TOKENS:
            return None
        pid_text = parts[4]
    elif kind == "UDP":
        if len(parts) < NETSTAT_UDP_MIN_FIELDS:
            return None
        pid_text = parts[3]
    else:
        return None

    parsed = parse_address_port(parts[1])
    if parsed is None:
        return None
    address, port = parsed

    if not pid_text.isascii() or not pid_text.isdigit():
        return None
    pid = int(pid_text)

    # System Idle Process holds no real listeners
    if pid == 0:
        return None

    return PortRecord(
        port=port,
        pid=pid,
        process_name=pid_names.get(pid, UNKNOWN_PROCESS),
        protocol=protocol,
        local_address=address,
        state=LISTEN_STATE,
    )
