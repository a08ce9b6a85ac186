from sqlalchemy import event

from .extensions import db
from .models.audit_log import AuditChainHead


def configure_sqlite(engine) -> None:
    """
    pysqlite defers BEGIN until the first write, so a SELECT ... FOR UPDATE
    protects nothing and SAVEPOINTs can commit the outer transaction. Take
    over transaction control and open every transaction with BEGIN IMMEDIATE,
    which grabs the database write lock up front (waiting on the busy timeout).
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_app(app) -> None:
    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            configure_sqlite(db.engine)


def ensure_chain_head(session=None) -> AuditChainHead:
    session = session or db.session
    head = session.get(AuditChainHead, AuditChainHead.SINGLETON_ID)
    if head is None:
        head = AuditChainHead(id=AuditChainHead.SINGLETON_ID, record_count=0, tail_hash="")
        session.add(head)
        session.commit()
    return head


def create_schema() -> None:
    db.create_all()
    ensure_chain_head()
