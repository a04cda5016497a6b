import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.casahub.constants import DEFAULT_CATEGORIES, DEFAULT_LOCATIONS  # noqa: E402
from app.casahub.models import Permission, Role, User  # noqa: E402
from app.casahub.modules.kitchen.models import ProductCategory, ProductLocation  # noqa: E402
from app.casahub.rbac import ADMIN_ROLE_KEY, MEMBER_PERMISSIONS, PERMISSIONS, USER_ROLE_KEY  # noqa: E402


@contextmanager
def _seed_session(database_url: str) -> Iterator[Session]:
    engine = create_engine(database_url, future=True, pool_pre_ping=True)
    s = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False, future=True)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_defaults(s: Session, *, admin_email: str, admin_password: str) -> User:
    """
    Seed permissions, the admin/user roles, the admin account and the default
    kitchen locations/categories. Idempotent; never overwrites an existing
    admin password.
    """

    def ensure_perm(key: str, name: str) -> Permission:
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        return p

    def ensure_role(key: str, name: str, description: str) -> Role:
        r = s.query(Role).filter(Role.key == key).one_or_none()
        if not r:
            r = Role(key=key, name=name, description=description)
            s.add(r)
        return r

    perms = {key: ensure_perm(key, name) for key, name in PERMISSIONS.items()}

    role_admin = ensure_role(ADMIN_ROLE_KEY, "Administrator", "Full access to the household")
    for p in perms.values():
        if p not in role_admin.permissions:
            role_admin.permissions.append(p)

    role_user = ensure_role(USER_ROLE_KEY, "Member", "Standard household member")
    for key in MEMBER_PERMISSIONS:
        if perms[key] not in role_user.permissions:
            role_user.permissions.append(perms[key])

    user = s.query(User).filter(User.email == admin_email).one_or_none()
    if not user:
        user = User(
            email=admin_email,
            name="CasaHub Admin",
            password_hash=generate_password_hash(admin_password),
            is_active=True,
        )
        s.add(user)
    if role_admin not in user.roles:
        user.roles.append(role_admin)

    for name, icon in DEFAULT_LOCATIONS:
        loc = s.query(ProductLocation).filter(ProductLocation.name == name).one_or_none()
        if not loc:
            s.add(ProductLocation(name=name, icon=icon))
        else:
            loc.icon = icon

    for name in DEFAULT_CATEGORIES:
        if not s.query(ProductCategory).filter(ProductCategory.name == name).one_or_none():
            s.add(ProductCategory(name=name))

    s.flush()
    return user


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@casahub.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "admin123"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///casahub.db").strip()

    with _seed_session(db_url) as s:
        seed_defaults(s, admin_email=admin_email, admin_password=admin_password)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
