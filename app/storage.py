import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, delete, func, inspect, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from app.config import settings

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    # check_same_thread=False is required for SQLite to work with FastAPI's threadpool
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


# Pooled engine shared by every request; each request checks out its own connection
engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    pool_pre_ping=True,
    echo=False,
)

# Returned records keep their loaded values after commit
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

# Base class for SQLAlchemy models
Base = declarative_base()


# Fixed sample messages for an empty board
SAMPLE_MESSAGES = [
    {"content": "这门课终于开始做项目了，有点期待！", "nickname": "学习达人"},
    {"content": "今天食堂的红烧肉不错，推荐大家去尝尝。", "nickname": "美食家"},
    {"content": "Python + SQLite 的组合真的很适合小项目！", "nickname": "技术控"},
    {"content": "有人知道期末考试的具体时间吗？", "nickname": "焦虑星人"},
]


# =============================================================================
# Errors
# =============================================================================

class StorageError(Exception):
    """Base class for failures of the underlying database."""


class StorageUnavailable(StorageError):
    """The database could not be opened or read."""


class StorageWriteError(StorageError):
    """A write statement failed and its transaction was rolled back."""


class MessageNotFound(LookupError):
    """No message row matches the requested id."""

    def __init__(self, message_id: int):
        super().__init__(f"message {message_id} not found")
        self.message_id = message_id


# =============================================================================
# Engine / Session Management
# =============================================================================

def init_db(bind: Optional[Engine] = None, seed: Optional[bool] = None) -> None:
    """
    Initialize the database: create missing tables and seed sample data.
    Called during application startup. Safe to call repeatedly.

    Args:
        bind: Engine to initialize (defaults to the application engine)
        seed: Insert sample messages into an empty table
              (defaults to settings.SEED_SAMPLE_DATA)

    Raises:
        StorageUnavailable: the database cannot be opened or written
    """
    bind = bind if bind is not None else engine
    seed = settings.SEED_SAMPLE_DATA if seed is None else seed

    logger.debug(f"Initializing database with URL: {bind.url!r}")
    try:
        # Import models to register them with Base.metadata
        from app.models import Message  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=bind)
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise StorageUnavailable("database initialization failed") from e

    if seed:
        session_factory = sessionmaker(autoflush=False, expire_on_commit=False, bind=bind)
        with session_factory() as db:
            try:
                seed_sample_messages(db)
            except StorageError as e:
                raise StorageUnavailable("database seeding failed") from e

    logger.info("Database initialized successfully")


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            if not inspect(conn).has_table("messages"):
                logger.error("Database schema not applied: 'messages' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository Functions
# =============================================================================

def count_messages(db: Session) -> int:
    """Return the number of stored messages."""
    from app.models import Message

    try:
        return db.query(func.count(Message.id)).scalar() or 0
    except SQLAlchemyError as e:
        logger.error(f"Failed to count messages: {e}")
        raise StorageUnavailable("count failed") from e


def seed_sample_messages(db: Session) -> int:
    """
    Insert SAMPLE_MESSAGES when the table is empty.

    Returns:
        Number of rows inserted (0 when the table already had data)
    """
    from app.models import Message

    existing = count_messages(db)
    if existing > 0:
        logger.info(f"Database already holds {existing} messages, skipping sample data")
        return 0

    try:
        db.add_all([Message(**sample) for sample in SAMPLE_MESSAGES])
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to insert sample messages: {e}")
        raise StorageWriteError("seeding failed") from e

    logger.info(f"Inserted {len(SAMPLE_MESSAGES)} sample messages")
    return len(SAMPLE_MESSAGES)


def list_messages(db: Session) -> list:
    """
    Retrieve every message, newest first.

    Ordering is created_at DESC, then id DESC so rows created within
    the same second still come back in reverse insertion order.
    """
    from app.models import Message

    logger.info("Querying all messages")
    try:
        messages = (
            db.query(Message)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to list messages: {e}")
        raise StorageUnavailable("list failed") from e

    logger.info(f"Retrieved {len(messages)} messages")
    return messages


def create_message(
    db: Session,
    content: str,
    nickname: str,
    ip_address: Optional[str] = None
):
    """
    Insert a new message with zero likes.

    Args:
        db: Database session
        content: Validated, trimmed message text
        nickname: Validated nickname (or the default sentinel)
        ip_address: Caller address, stored but never returned

    Returns:
        The persisted Message, with id and created_at populated

    Raises:
        StorageWriteError: the insert failed
    """
    from app.models import Message

    logger.info(f"Creating message: nickname={nickname}, length={len(content)}")

    message = Message(
        content=content,
        nickname=nickname,
        likes=0,
        ip_address=ip_address,
    )
    try:
        db.add(message)
        db.flush()
        # Load the server-side created_at default inside the same transaction
        db.refresh(message)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create message: {e}")
        raise StorageWriteError("insert failed") from e

    logger.info(f"Message created successfully: {message.id}")
    return message


def get_message_by_id(db: Session, message_id: int):
    """
    Retrieve a message by its ID.

    Returns:
        Message object if found, None otherwise
    """
    from app.models import Message

    logger.info(f"Looking up message by ID: {message_id}")
    try:
        result = db.query(Message).filter(Message.id == message_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Failed to look up message {message_id}: {e}")
        raise StorageUnavailable("lookup failed") from e

    logger.info(f"Message lookup result: {'found' if result else 'not found'}")
    return result


def delete_message(db: Session, message_id: int) -> bool:
    """
    Permanently remove a message.

    Returns:
        True if a row was deleted, False if no row matched

    Raises:
        StorageWriteError: the delete failed
    """
    from app.models import Message

    logger.info(f"Deleting message: {message_id}")
    try:
        result = db.execute(
            delete(Message)
            .where(Message.id == message_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete message {message_id}: {e}")
        raise StorageWriteError("delete failed") from e

    deleted = result.rowcount > 0
    logger.info(f"Message delete result: {'deleted' if deleted else 'no row'}")
    return deleted


def increment_likes(db: Session, message_id: int):
    """
    Add one like to a message and return the updated row.

    The UPDATE and the re-read share one transaction; the write lock
    taken by the UPDATE is held until commit, so the row cannot be
    deleted between the two statements.

    Raises:
        MessageNotFound: no row with this id
        StorageWriteError: the update failed
    """
    from app.models import Message

    logger.info(f"Incrementing likes for message: {message_id}")
    try:
        result = db.execute(
            update(Message)
            .where(Message.id == message_id)
            .values(likes=Message.likes + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            raise MessageNotFound(message_id)

        message = (
            db.query(Message)
            .populate_existing()
            .filter(Message.id == message_id)
            .first()
        )
        if message is None:
            db.rollback()
            raise MessageNotFound(message_id)

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to like message {message_id}: {e}")
        raise StorageWriteError("like failed") from e

    logger.info(f"Message {message_id} now has {message.likes} likes")
    return message
