import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from spadesk.authn import create_user, get_user_by_email  # noqa: E402
from spadesk.db import SessionLocal, init_db  # noqa: E402
from spadesk.errors import SpadeskError  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a Spadesk admin account")
    parser.add_argument("--email", required=True)
    parser.add_argument("--first-name", default="Salon")
    parser.add_argument("--last-name", default="Admin")
    parser.add_argument("--password", default=None, help="prompted for when omitted")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")

    init_db()
    with SessionLocal() as db:
        if get_user_by_email(db, args.email):
            print(f"[SKIP] User {args.email} already exists")
            return 0
        try:
            user = create_user(
                db,
                first_name=args.first_name,
                last_name=args.last_name,
                email=args.email,
                password=password,
                role="admin",
            )
        except SpadeskError as exc:
            print(f"[FAIL] {exc.message}")
            return 1

    print(f"[PASS] Admin {user.email} created (id={user.id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
