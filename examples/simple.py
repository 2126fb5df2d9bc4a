import logging
import asyncio

from mysql_wire import Connection, ConnectionConfig, ServerStatus

logger = logging.getLogger(__name__)


async def run_query(conn, sql):
    await conn.send_query(sql)
    while True:
        header = await conn.get_result()
        if header.has_result_set:
            fields = await conn.get_columns_data(header.field_count)
            while True:
                row = await conn.fetch_row(0, fields)
                if row is None:
                    break
                logger.info("%s", row.as_dict())
        else:
            logger.info("%s row(s) affected", header.affected_rows)
        if ServerStatus.SERVER_MORE_RESULTS_EXISTS not in conn.server_status:
            return


async def main():
    logging.basicConfig(level=logging.INFO)
    config = ConnectionConfig(host="127.0.0.1", port=3306, user="root")
    async with Connection(config) as conn:
        logger.info("Connected to %s as thread %s", conn.version, conn.thread_id)
        await run_query(conn, "SELECT 1 AS a; SELECT NOW() AS b")


if __name__ == "__main__":
    asyncio.run(main())
