import logging
import asyncio

from mysql_wire import Connection, ConnectionConfig, ServerStatus
from mysql_wire.packets import make_com_stmt_execute
from mysql_wire.types import ComStmtExecuteFlags

logger = logging.getLogger(__name__)


async def log_rows(conn, stmt_id, fields):
    while True:
        row = await conn.fetch_row(stmt_id, fields)
        if row is None:
            return
        logger.info("%s", row.as_dict())


async def main():
    logging.basicConfig(level=logging.INFO)
    config = ConnectionConfig(host="127.0.0.1", port=3306, user="root")
    async with Connection(config) as conn:
        stmt_id, params = await conn.prepare_statement("SELECT ? + 1 AS a, ? AS b")
        logger.info("Prepared statement %s with %s parameters", stmt_id, len(params))

        # Read through a server side cursor, two rows at a time
        await conn.execute_statement(
            make_com_stmt_execute(
                conn.charset,
                stmt_id,
                [41, "hello"],
                flags=ComStmtExecuteFlags.CURSOR_TYPE_READ_ONLY,
            )
        )
        header = await conn.get_result()
        fields = await conn.get_columns_data(header.field_count)
        if ServerStatus.SERVER_STATUS_CURSOR_EXISTS not in conn.server_status:
            # The server sent the rows inline
            await log_rows(conn, stmt_id, fields)
        while (
            ServerStatus.SERVER_STATUS_CURSOR_EXISTS in conn.server_status
            and ServerStatus.SERVER_STATUS_LAST_ROW_SENT not in conn.server_status
        ):
            await conn.fetch_statement(stmt_id, 2)
            await log_rows(conn, stmt_id, fields)

        await conn.close_statement(stmt_id)


if __name__ == "__main__":
    asyncio.run(main())
