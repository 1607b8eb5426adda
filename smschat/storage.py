import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.exc import IntegrityError

from smschat.config import settings
from smschat.utils import utc_now_iso

logger = logging.getLogger(__name__)

# check_same_thread=False lets SQLite connections cross FastAPI's threadpool
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

REQUIRED_TABLES = ("messages", "users")


class DuplicateUserError(Exception):
    """Raised when registering a user_name that already exists."""


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from smschat.models import Message, User  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


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
        True if DB is healthy and all tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        inspector = inspect(engine)
        for table in REQUIRED_TABLES:
            if not inspector.has_table(table):
                logger.error(f"Database schema not applied: '{table}' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(
    db: Session,
    owner: str,
    phone_number: str,
    message_body: str,
    direction: str,
    status: str,
):
    """
    Insert a new message and return it with its store-assigned id.

    Args:
        db: Database session
        owner: Username the message belongs to
        phone_number: Destination number
        message_body: Message text
        direction: outbound or inbound
        status: Initial internal status
    """
    from smschat.models import Message

    now = utc_now_iso()
    message = Message(
        owner=owner,
        phone_number=phone_number,
        message_body=message_body,
        direction=direction,
        status=status,
        created_at=now,
        updated_at=now,
    )

    try:
        db.add(message)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(message)
    logger.info(f"Message created: id={message.id}, owner={owner}, status={status}")
    return message


def get_message_by_provider_id(db: Session, provider_message_id: str):
    """
    Retrieve a message by the id the SMS provider assigned to it.

    Returns:
        Message object if found, None otherwise
    """
    from smschat.models import Message

    result = (
        db.query(Message)
        .filter(Message.provider_message_id == provider_message_id)
        .first()
    )
    logger.debug(f"Provider id lookup {provider_message_id}: {'found' if result else 'not found'}")
    return result


def list_messages(db: Session, owner: str) -> list:
    """All messages for one owner, newest first."""
    from smschat.models import Message

    return (
        db.query(Message)
        .filter(Message.owner == owner)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .all()
    )


def list_pending_messages(db: Session, owner: str, direction: str, statuses, created_since: str) -> list:
    """
    Messages of one owner that may still change status at the provider.

    Only rows with a provider id, a status in `statuses` and created at or
    after `created_since` are returned, oldest first.
    """
    from smschat.models import Message

    return (
        db.query(Message)
        .filter(
            Message.owner == owner,
            Message.direction == direction,
            Message.status.in_(list(statuses)),
            Message.provider_message_id.isnot(None),
            Message.created_at >= created_since,
        )
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def update_message(db: Session, message, **fields):
    """
    Apply a partial update to a message and bump updated_at.

    Last write wins; there is no version check.
    """
    for name, value in fields.items():
        setattr(message, name, value)
    message.updated_at = utc_now_iso()

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(message)
    logger.info(f"Message {message.id} updated: {sorted(fields)}")
    return message


# =============================================================================
# User Repository Functions
# =============================================================================

def create_user(db: Session, user_name: str, password_digest: str):
    """
    Insert a new user.

    Raises:
        DuplicateUserError: user_name is already taken
    """
    from smschat.models import User

    now = utc_now_iso()
    user = User(
        user_name=user_name,
        password_digest=password_digest,
        created_at=now,
        updated_at=now,
    )

    try:
        db.add(user)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Duplicate user_name rejected: {user_name}")
        raise DuplicateUserError(user_name)

    db.refresh(user)
    logger.info(f"User created: {user_name}")
    return user


def get_user_by_name(db: Session, user_name: str) -> Optional[object]:
    from smschat.models import User

    return db.query(User).filter(User.user_name == user_name).first()
