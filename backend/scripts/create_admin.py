"""CLI script to create an admin account or promote an existing one.
Usage: python scripts/create_admin.py --email EMAIL --password PASSWORD --name NAME
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `app` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from app.database import engine, create_db_and_tables
from app import models, repositories, services


def main(email: str, password: str, name: str) -> models.User:
    """Create the admin user, or set `role=ADMIN` on an existing account.

    Running it twice is harmless: an existing admin is left unchanged
    apart from the role, and the password is only set on creation.
    """
    create_db_and_tables()
    with Session(engine) as session:
        repo = repositories.UserRepository(session)
        user = repo.get_by_email(email)
        if user:
            if user.is_admin:
                print(f'{user.email} is already an admin (id={user.id})')
                return user
            user.role = models.ROLE_ADMIN
            user.updated_at = models.utcnow()
            user = repo.save(user)
            print(f'promoted {user.email} to admin (id={user.id})')
            return user
        user = services.AuthService(session).register(email, password, name)
        user.role = models.ROLE_ADMIN
        user = repo.save(user)
        print(f'created admin {user.email} (id={user.id})')
        return user


if __name__ == '__main__':
    p = argparse.ArgumentParser(description='Create or promote an admin user')
    p.add_argument('--email', required=True)
    p.add_argument('--password', required=True)
    p.add_argument('--name', default='Admin')
    args = p.parse_args()
    try:
        main(args.email, args.password, args.name)
    except services.ServiceError as e:
        print(f'error: {e.message}')
        sys.exit(1)
