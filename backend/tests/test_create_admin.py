import sys
import pathlib

from sqlmodel import Session

from app import repositories
from app.database import engine

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1] / 'scripts'))
import create_admin  # noqa: E402


def test_create_admin_is_idempotent(capsys):
    user = create_admin.main('boss@example.com', 'secret123', 'Boss')
    assert user.role == 'ADMIN'
    again = create_admin.main('boss@example.com', 'ignored', 'Boss')
    assert again.id == user.id
    assert 'already an admin' in capsys.readouterr().out


def test_create_admin_promotes_existing_user():
    from app import services
    with Session(engine) as session:
        services.AuthService(session).register('member@example.com', 'secret123', 'Member')
    create_admin.main('member@example.com', 'unused', 'Member')
    with Session(engine) as session:
        assert repositories.UserRepository(session).get_by_email('member@example.com').is_admin
