from __future__ import annotations

import logging
from typing import Set, Optional

from sqlglot import tokenize
from sqlglot.errors import TokenError
from sqlglot.tokens import TokenType

from mysql_wire.config import LocalInfile
from mysql_wire.constants import LOCAL_INFILE_CHUNK_SIZE
from mysql_wire.stream import MysqlStream

logger = logging.getLogger(__name__)


def requested_files(sql: str) -> Set[str]:
    """
    Find the file names of `LOAD DATA LOCAL INFILE '<name>'` (or `LOAD XML`) clauses.

    For example:
        >>> requested_files("LOAD DATA LOCAL INFILE '/tmp/x.csv' INTO TABLE t")
        {'/tmp/x.csv'}
    """
    try:
        tokens = tokenize(sql, read="mysql")
    except TokenError:
        return set()

    files = set()
    for i in range(2, len(tokens)):
        token = tokens[i]
        if (
            token.token_type == TokenType.STRING
            and tokens[i - 1].text.upper() == "INFILE"
            and tokens[i - 2].text.upper() == "LOCAL"
        ):
            files.add(token.text)
    return files


def is_allowed(policy: LocalInfile, filename: str, last_query: Optional[str]) -> bool:
    if policy is LocalInfile.ANY:
        return True
    if policy is LocalInfile.QUERY:
        return filename in requested_files(last_query or "")
    return False


async def send_file(
    stream: MysqlStream, filename: str, chunk_size: int = LOCAL_INFILE_CHUNK_SIZE
) -> int:
    """
    Stream a file to the server, one packet per chunk, followed by an empty packet.

    Raises:
        OSError: if the file can't be read. Nothing has been sent when opening fails, but
            a read error part way leaves the caller to terminate the transfer.
    Returns:
        Number of bytes sent
    """
    total = 0
    with open(filename, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            await stream.write(chunk)
            total += len(chunk)
    await stream.write_empty()
    logger.debug("Sent %s bytes from %s", total, filename)
    return total
