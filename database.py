import sqlite3
import logging
import threading
from contextlib import contextmanager

import config
from queries import EventQuery

logger = logging.getLogger(__name__)

_database = None
_database_lock = threading.Lock()

def casefold(value):
    """SQL casefold(): Unicode-aware lowercasing for search."""
    return value.casefold() if isinstance(value, str) else value

EVENT_COLUMNS = "e.id, e.name, e.description, e.date, e.time, e.location, e.category, e.capacity, e.price, e.image, e.creator_id, e.created_at"

class Database:
    def __init__(self, db_name=None):
        """
        Initialize SQLite database connection.
        The connection is shared by every request thread, so each call holds
        the lock for the duration of its transaction.
        """
        self.db_name = db_name or config.DATABASE_PATH
        self.conn = sqlite3.connect(self.db_name, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.create_function("casefold", 1, casefold, deterministic=True)
        self.lock = threading.RLock()
        self.create_tables()

    @contextmanager
    def transaction(self):
        """Yield a cursor; commit on success, roll back on error."""
        with self.lock, self.conn:
            yield self.conn.cursor()

    def create_tables(self):
        """Create database tables with appropriate indexes."""
        with self.transaction() as cursor:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password TEXT NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    date TEXT NOT NULL,
                    time TEXT,
                    location TEXT,
                    category TEXT NOT NULL,
                    capacity INTEGER NOT NULL CHECK(capacity > 0),
                    price REAL NOT NULL DEFAULT 0 CHECK(price >= 0),
                    image TEXT,
                    creator_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (creator_id) REFERENCES users(id)
                )
            ''')
            # seq keeps attendees in join order
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS event_attendees (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    FOREIGN KEY (event_id) REFERENCES events(id),
                    FOREIGN KEY (user_id) REFERENCES users(id),
                    UNIQUE (event_id, user_id)
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_date ON events(date)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_category ON events(category)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_event_attendees_event_id ON event_attendees(event_id)')

    def add_user(self, user):
        """Add a user to the database."""
        with self.transaction() as cursor:
            cursor.execute('''
                INSERT INTO users (id, name, email, password)
                VALUES (?, ?, ?, ?)
            ''', (user.id, user.name, user.email, user.password))

    def get_user_by_email(self, email):
        """Retrieve a user by email."""
        with self.transaction() as cursor:
            cursor.execute('SELECT id, name, email, password FROM users WHERE email = ?', (email,))
            row = cursor.fetchone()
        return dict(row) if row else None

    def get_users(self, user_ids):
        """Retrieve the public fields of several users, keyed by id."""
        user_ids = list(user_ids)
        if not user_ids:
            return {}
        placeholders = ", ".join("?" for _ in user_ids)
        with self.transaction() as cursor:
            cursor.execute(f'SELECT id, name, email FROM users WHERE id IN ({placeholders})', user_ids)
            rows = cursor.fetchall()
        return {row["id"]: dict(row) for row in rows}

    def add_event(self, event, created_at):
        """Insert an event and its creator as the first attendee."""
        with self.transaction() as cursor:
            cursor.execute('''
                INSERT INTO events (id, name, description, date, time, location, category,
                                    capacity, price, image, creator_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (event["id"], event["name"], event["description"], event["date"], event["time"],
                  event["location"], event["category"], event["capacity"], event["price"],
                  event["image"], event["creator_id"], created_at))
            cursor.execute('''
                INSERT INTO event_attendees (event_id, user_id)
                VALUES (?, ?)
            ''', (event["id"], event["creator_id"]))

    def get_event(self, event_id):
        """Retrieve an event by ID."""
        with self.transaction() as cursor:
            cursor.execute(f'SELECT {EVENT_COLUMNS} FROM events e WHERE e.id = ?', (event_id,))
            row = cursor.fetchone()
        return dict(row) if row else None

    def find_events(self, query: EventQuery):
        """Retrieve the events matching a query, earliest first."""
        with self.transaction() as cursor:
            cursor.execute(
                f'SELECT {EVENT_COLUMNS} FROM events e {query.where_sql()} ORDER BY e.date ASC, e.created_at ASC',
                query.params,
            )
            rows = cursor.fetchall()
        return [dict(r) for r in rows]

    def list_attendees_for_events(self, event_ids):
        """Retrieve the expanded attendees of several events, in join order."""
        if not event_ids:
            return {}
        placeholders = ", ".join("?" for _ in event_ids)
        with self.transaction() as cursor:
            cursor.execute(f'''
                SELECT ea.event_id, u.id, u.name, u.email FROM event_attendees ea
                JOIN users u ON u.id = ea.user_id
                WHERE ea.event_id IN ({placeholders})
                ORDER BY ea.seq
            ''', list(event_ids))
            rows = cursor.fetchall()
        attendees = {event_id: [] for event_id in event_ids}
        for r in rows:
            attendees[r["event_id"]].append({"id": r["id"], "name": r["name"], "email": r["email"]})
        return attendees

    def add_attendee_if_room(self, event_id, user_id):
        """
        Append a user to an event's attendees in one statement.
        The row is written only if the event exists, the user is not already
        attending and the event is below capacity. Returns True if written.
        """
        with self.transaction() as cursor:
            cursor.execute('''
                INSERT OR IGNORE INTO event_attendees (event_id, user_id)
                SELECT e.id, ? FROM events e
                WHERE e.id = ?
                  AND (SELECT COUNT(*) FROM event_attendees ea WHERE ea.event_id = e.id) < e.capacity
                  AND NOT EXISTS (
                      SELECT 1 FROM event_attendees ea WHERE ea.event_id = e.id AND ea.user_id = ?
                  )
            ''', (user_id, event_id, user_id))
            return cursor.rowcount > 0

    def is_attending(self, event_id, user_id):
        with self.transaction() as cursor:
            cursor.execute('SELECT 1 FROM event_attendees WHERE event_id = ? AND user_id = ?', (event_id, user_id))
            return cursor.fetchone() is not None

    def get_attendee_count(self, event_id):
        """Get the number of attendees for an event."""
        with self.transaction() as cursor:
            cursor.execute('SELECT COUNT(*) FROM event_attendees WHERE event_id = ?', (event_id,))
            result = cursor.fetchone()
        return result[0] if result else 0

    def ping(self):
        with self.transaction() as cursor:
            cursor.execute('SELECT 1')
            cursor.fetchone()

    def close(self):
        """Close the database connection."""
        with self.lock:
            self.conn.close()


def get_database() -> Database:
    """Return the process-wide database, opening it on first use."""
    global _database
    if _database is None:
        with _database_lock:
            if _database is None:
                _database = Database()
                logger.info(f"Opened database {_database.db_name}")
    return _database
