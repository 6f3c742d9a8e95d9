"""
Seed demo data and print development tokens for the demo users.
Run: python -m scripts.seed_demo_data
"""
from datetime import timedelta

from app.core.logging import setup_logging
from app.core.security import create_access_token
from app.db.models import Company, CompanyUser
from app.db.seed import seed_demo_data
from app.db.session import SessionLocal, init_db


def main():
    setup_logging()
    init_db()
    seed_demo_data()

    db = SessionLocal()
    try:
        for membership in db.query(CompanyUser).order_by(CompanyUser.user_id).all():
            company = db.query(Company).filter(Company.id == membership.company_id).first()
            token = create_access_token(
                {
                    "sub": str(membership.user_id),
                    "email": membership.email,
                    "company_id": membership.company_id,
                    "user_metadata": {"full_name": membership.full_name, "is_admin": True},
                },
                expires_delta=timedelta(days=1),
            )
            print(f"{company.name} / {membership.email} (X-Company-Id: {company.id})")
            print(f"  Authorization: Bearer {token}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
