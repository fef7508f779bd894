"""Seed a development database: an admin, a seller, a buyer, a project and sandbox gateway settings."""
from __future__ import annotations

from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from app import models  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.db import create_all, get_sessionmaker, init_engine  # noqa: E402
from app.schemas.payment_settings import PaymentSettingsUpdate  # noqa: E402
from app.services import payment_gateway  # noqa: E402
from app.services.settings_store import DbSettingsStore  # noqa: E402


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    init_engine()
    create_all()
    session = get_sessionmaker()()

    try:
        admin = models.User(email="admin@mimariproje.com", first_name="Admin")
        seller = models.User(email="mimar@example.com", first_name="Ayse", last_name="Yilmaz", city="Istanbul")
        buyer = models.User(email="alici@example.com", first_name="Mehmet", last_name="Demir", city="Ankara")
        session.add_all([admin, seller, buyer])
        session.flush()

        session.add(
            models.Project(
                owner_id=seller.id,
                title="Modern villa projesi",
                description="Two-storey villa, full drawing set.",
                price=Decimal("1000.00"),
                currency="TRY",
            )
        )

        payment_gateway.update_settings(
            DbSettingsStore(session),
            PaymentSettingsUpdate(
                gateway="iyzico",
                commission_rate=Decimal("0.10"),
                iyzico_api_key="sandbox-api-key",
                iyzico_secret_key="sandbox-secret-key",
                iyzico_base_url="https://sandbox-api.iyzipay.com",
            ),
            actor_id=admin.id,
        )
        session.commit()
        print("Seed data inserted. Issue keys with: python -m scripts.create_api_key <email> --scope admin")
    finally:
        session.close()


if __name__ == "__main__":
    main()
