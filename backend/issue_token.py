"""Print a bearer token for a local user, creating the user if needed.

Stands in for the identity provider during local development.

Usage:
    python -m backend.issue_token student@example.edu student
"""
import sys

from backend.auth.jwt_handler import create_access_token
from backend.database import Base, SessionLocal, engine
from backend.models import appointment, availability, department, faculty, student  # noqa: F401
from backend.models.user import ROLES, User


def main() -> None:
    if len(sys.argv) != 3 or sys.argv[2] not in ROLES:
        print(f"Usage: python -m backend.issue_token <email> <{'|'.join(ROLES)}>", file=sys.stderr)
        sys.exit(2)

    email = sys.argv[1].strip().lower()
    role = sys.argv[2]

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            user = User(email=email, role=role)
            db.add(user)
        elif user.role != role:
            print(f"{email} already exists with role {user.role}", file=sys.stderr)
            sys.exit(1)
        db.commit()
        db.refresh(user)
        print(create_access_token(subject=str(user.id), role=user.role))
    finally:
        db.close()


if __name__ == "__main__":
    main()
