import sys
import os
from sqlmodel import Session, select

# Add current directory to path
sys.path.append(os.getcwd())

from app.db.session import engine, init_db
from app.models.user import User, UserRole
from app.core.security import get_password_hash


def create_initial_user(email, password, db_engine=None):
    """Create the first ADMIN account. Returns False when the email is already taken."""
    db_engine = db_engine or engine

    with Session(db_engine) as session:
        user = session.exec(select(User).where(User.email == email)).first()

        if user:
            print(f"User with email {email} already exists.")
            return False

        print(f"Creating user {email}...")
        db_user = User(
            email=email,
            password=get_password_hash(password),
            first_name="System",
            last_name="Admin",
            role=UserRole.ADMIN,
        )
        session.add(db_user)
        session.commit()
        print("Initial admin created successfully!")
        print(f"Email: {email}")
        print(f"Role: {UserRole.ADMIN.value}")
        return True


if __name__ == "__main__":
    print("--- Initial Admin Creation ---")
    # Tables may not exist yet on a fresh database
    init_db()
    create_initial_user(
        os.environ.get("FIRST_ADMIN_EMAIL", "admin@example.com"),
        os.environ.get("FIRST_ADMIN_PASSWORD", "adminpassword"),
    )
