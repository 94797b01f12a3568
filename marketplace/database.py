from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


Base = declarative_base()

INDEX_STATEMENTS = {
    'listings': [
        'CREATE INDEX IF NOT EXISTS idx_listings_status_price ON listings(status, price)',
        'CREATE INDEX IF NOT EXISTS idx_listings_owner_created ON listings(owner_id, created_at)',
    ],
    'limit_orders': [
        'CREATE INDEX IF NOT EXISTS idx_limit_orders_status_price ON limit_orders(status, max_price)',
        'CREATE INDEX IF NOT EXISTS idx_limit_orders_owner_created ON limit_orders(owner_id, created_at)',
    ],
    'messages': [
        'CREATE INDEX IF NOT EXISTS idx_messages_pair_created ON messages(sender_id, receiver_id, created_at)',
    ],
}


def build_engine(database_url: str) -> Engine:
    if database_url.startswith('sqlite'):
        connect_args = {'check_same_thread': False}
        if ':memory:' in database_url or database_url in {'sqlite://', 'sqlite:///'}:
            return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(database_url, connect_args=connect_args)
    return create_engine(database_url, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


def initialize_schema(engine: Engine) -> None:
    # Register every model on Base.metadata before creating tables.
    from marketplace.models import limit_order, listing, message, server_session, user  # noqa: F401

    Base.metadata.create_all(bind=engine)

    existing_tables = set(inspect(engine).get_table_names())
    with engine.begin() as connection:
        for table_name, statements in INDEX_STATEMENTS.items():
            if table_name not in existing_tables:
                continue
            for statement in statements:
                connection.execute(text(statement))


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
