import argparse
import os
import sys

# Add project root to path
sys.path.append(os.getcwd())

from app.core.database import SessionLocal, engine
from app.core.security import get_password_hash
from app.models import Base, User, Role


def create_admin(name, email, password):
    Base.metadata.create_all(bind=engine)
    print("✓ Tables verified")

    db = SessionLocal()
    try:
        email = email.strip().lower()
        user = db.query(User).filter(User.email == email).first()
        if user:
            user.role = Role.ADMIN.value
            user.is_active = True
            print(f"✓ Existing user promoted to admin: {email}")
        else:
            user = User(
                name=name,
                email=email,
                hashed_password=get_password_hash(password),
                role=Role.ADMIN.value,
                is_active=True
            )
            db.add(user)
            print(f"✓ Admin created: {email}")
        db.commit()
    except Exception as e:
        db.rollback()
        print(f"❌ Error: {str(e)}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote an administrator account")
    parser.add_argument("--name", default="Administrator")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    args = parser.parse_args()
    create_admin(args.name, args.email, args.password)
