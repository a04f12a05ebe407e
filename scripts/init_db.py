import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.huddle.models import User
from app.huddle.modules.groups.models import Group, GroupMember


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None, with_demo_group: bool = False) -> None:
    """
    Seed the first user (and optionally a demo group they lead) in an idempotent way.
    Does NOT overwrite an existing user's password.
    """
    email = (os.environ.get("SEED_USER_EMAIL") or "organizer@huddle.local").strip().lower()
    password = os.environ.get("SEED_USER_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///huddle.db").strip()

    with _session_scope(db_url) as s:
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user:
            user = User(email=email, name="Organizer", password_hash=generate_password_hash(password), is_active=True)
            s.add(user)
            s.flush()
            print(f"Created user {email}", flush=True)
        else:
            print(f"User {email} already exists; password left unchanged", flush=True)

        if with_demo_group:
            group = s.query(Group).filter(Group.name == "Demo group").one_or_none()
            if not group:
                group = Group(name="Demo group", description="A place to try things out.", created_by_user_id=user.id)
                group.group_members.append(GroupMember(user_id=user.id, leader=True))
                s.add(group)
                print("Created demo group", flush=True)


def main() -> None:
    seed_only(with_demo_group="--demo" in sys.argv[1:])


if __name__ == "__main__":
    main()
