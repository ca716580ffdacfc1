"""Create an admin account and its profile document.

Admins cannot register through the API, so the first one is made here.

Usage:
    python -m campus_booking.create_admin <email> <password> <name>
"""
import sys

from campus_booking.core.roles import ADMIN
from campus_booking.database import Base, SessionLocal, engine
from campus_booking.models.account import Account
from campus_booking.models.auth_session import AuthSession
from campus_booking.models.document import Document
from campus_booking.services.documents import USERS, DocumentStore
from campus_booking.services.identity import IdentityError, IdentityService


def create_admin(db, email: str, password: str, name: str) -> str:
    account = IdentityService(db).create_account(email, password)
    DocumentStore(db).set(USERS, account.uid, {'name': name.strip(), 'email': account.email, 'role': ADMIN})
    return account.uid


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 3:
        print(__doc__, file=sys.stderr)
        sys.exit(2)

    Base.metadata.create_all(bind=engine, tables=[Account.__table__, AuthSession.__table__, Document.__table__])
    db = SessionLocal()
    try:
        uid = create_admin(db, *args)
    except IdentityError as exc:
        print(f"Could not create admin: {exc.message}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()
    print(uid)


if __name__ == "__main__":
    main()
