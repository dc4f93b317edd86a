import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.modhub.models import Base, User  # noqa: E402
from app.modhub.modules.hierarchy.models import CatalogModule, ModuleAssignment  # noqa: E402
from scripts._db_utils import create_script_engine, script_session  # noqa: E402

# (key, name, href, legacy ids)
DEFAULT_MODULES = [
    ("orders", "Orders", "/orders", ["module-orders"]),
    ("payments", "Payments", "/pay", ["old-id-123"]),
    ("projects", "Projects", "/projects", []),
    ("notifications", "Notifications", "/notifications", []),
]


def seed_only(*, database_url: str | None = None, create_tables: bool = True) -> None:
    """
    Seed the admin user, catalog modules and the admin's
    module assignments in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    create_tables=False when alembic already owns the schema.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@modhub.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///modhub.db").strip()

    if create_tables:
        engine = create_script_engine(db_url)
        try:
            Base.metadata.create_all(bind=engine)
        finally:
            engine.dispose()

    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
            s.flush()

        for order, (key, name, href, legacy) in enumerate(DEFAULT_MODULES):
            m = s.query(CatalogModule).filter(CatalogModule.key == key).one_or_none()
            if not m:
                s.add(CatalogModule(key=key, name=name, href=href, legacy_ids=legacy, sort_order=order))

            a = (
                s.query(ModuleAssignment)
                .filter(ModuleAssignment.module_key == key)
                .filter(ModuleAssignment.assigned_user_id == user.id)
                .one_or_none()
            )
            if not a:
                s.add(ModuleAssignment(module_key=key, module_name=name, assigned_user_id=user.id, assigned_by_user_id=user.id))

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
