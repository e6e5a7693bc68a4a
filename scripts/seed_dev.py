from datetime import datetime, timedelta, timezone
from decimal import Decimal

from lotteryengine.campaigns import CampaignInfo, CampaignStatus, StaticCampaignResolver
from lotteryengine.db.engine import get_sessionmaker, make_engine
from lotteryengine.lifecycle import PrizeSpec, always_drawable
from lotteryengine.models import Base
from lotteryengine.workflows import LotteryService, purchase_tickets


def main() -> None:
    """Seed the development database with a drawn and an open demo lottery."""
    engine = make_engine()

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)

    now = datetime.now(timezone.utc)
    resolver = StaticCampaignResolver()
    resolver.add(
        CampaignInfo(
            campaign_id="demo-campaign",
            is_lottery_eligible=True,
            status=CampaignStatus.ACTIVE,
            end_date=now + timedelta(days=30),
        )
    )
    service = LotteryService(get_sessionmaker(engine), resolver)

    prizes = [
        PrizeSpec(name="Grand prize", value=Decimal("500.00"), currency="EUR"),
        PrizeSpec(name="Runner-up", value=Decimal("100.00"), currency="EUR"),
        PrizeSpec(name="Third place", value=Decimal("25.00"), currency="EUR"),
    ]
    drawn = service.create_lottery(
        "demo-campaign", now + timedelta(days=7), Decimal("5.00"), "EUR", 50, prizes
    )
    for user_id in ("user_01", "user_02", "user_03"):
        purchase_tickets(service, drawn.id, user_id, "EUR", 2)
    winners = service.perform_drawing(drawn.id, always_drawable)

    open_lottery = service.create_lottery(
        "demo-campaign", now + timedelta(days=14), Decimal("2.50"), "EUR", 100, prizes[:1]
    )
    purchase_tickets(service, open_lottery.id, "user_01", "EUR", 3)

    print(f"Seeded lottery {drawn.id} (drawn, {len(winners)} winners)")
    print(f"Seeded lottery {open_lottery.id} (open, 3 tickets sold)")


if __name__ == "__main__":
    main()
