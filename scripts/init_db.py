import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.bizadmin.modules.catalog.service import seed_super_admin, sync_catalog
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed modules/permissions/grants, the SUPER_ADMIN role and the superadmin user.
    Idempotent. Does NOT overwrite an existing superadmin's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@admin.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///bizadmin.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        created = sync_catalog(s)
        seed_super_admin(s, email=admin_email, password=admin_password)

    print(f"Initialized database (seed_only). New grants: {created}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
