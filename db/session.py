from sqlmodel import create_engine, Session

from core.settings import DATABASE_URL

# Holds clock events queued while the time-tracking service is unreachable

# SQLite needs cross-thread access since FastAPI runs sync dependencies in a threadpool
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# The Wire / Link That Lets Us Pass Data from App -> db
# Note: echo=True will log all SQL statements, set to False in production
engine = create_engine(DATABASE_URL, echo=False, connect_args=connect_args)


# Getter for this Wire, modified for FastAPI dependency injection
def get_session():
    with Session(engine) as session:
        try:
            yield session
        finally:
            session.close()
