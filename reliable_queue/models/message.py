from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Sequence,
    String,
    Table,
    Text,
)

ORACLE_SEQUENCE_SUFFIX = "_seq"

# MySQL 5.6 only supports 191 characters on an indexed utf8mb4 column
QUEUE_NAME_LENGTH = 190


def build_messages_table(table_name: str, metadata: Optional[MetaData] = None) -> Table:
    """
    Describe the message table for ``table_name``.

    Many logical queues may share one table, separated by ``queue_name``.
    The sequence is only used on backends without another way to generate
    ids (Oracle); PostgreSQL, MySQL and SQLite ignore it.
    """
    metadata = metadata if metadata is not None else MetaData()
    return Table(
        table_name,
        metadata,
        Column(
            "id",
            # SQLite only auto-increments INTEGER PRIMARY KEY columns
            BigInteger().with_variant(Integer, "sqlite"),
            Sequence(f"{table_name}{ORACLE_SEQUENCE_SUFFIX}", optional=True),
            primary_key=True,
            autoincrement=True,
        ),
        Column("body", Text, nullable=False),
        Column("headers", Text, nullable=False),
        Column("queue_name", String(QUEUE_NAME_LENGTH), nullable=False),
        Column("created_at", DateTime, nullable=False),
        Column("available_at", DateTime, nullable=False),
        Column("delivered_at", DateTime, nullable=True),
        Index(f"ix_{table_name}_queue_name", "queue_name"),
        Index(f"ix_{table_name}_available_at", "available_at"),
        Index(f"ix_{table_name}_delivered_at", "delivered_at"),
    )
