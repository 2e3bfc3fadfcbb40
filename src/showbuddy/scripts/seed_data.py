"""
Seed script to populate the database with sample showings

Usage:
    python -m showbuddy.scripts.seed_data

Prints bearer tokens for a sample user and an admin so the API can be
exercised straight away.
"""
import asyncio
from datetime import date, time, timedelta

from showbuddy.core.database import AsyncSessionLocal, init_db
from showbuddy.core.exceptions import ConflictError
from showbuddy.core.security import ADMIN_ROLE, create_access_token
from showbuddy.schemas import ShowingCreate
from showbuddy.services import ShowingService

MOVIES = [
    ("tt15239678", "Dune: Part Two"),
    ("tt1375666", "Inception"),
    ("tt0816692", "Interstellar"),
]

THEATERS = [
    ("pvr-koramangala", "PVR Forum Koramangala", "standard"),
    ("inox-garuda", "INOX Garuda Mall", "standard"),
    ("cinepolis-studio", "Cinepolis Studio", "compact"),
]

SHOW_TIMES = [time(10, 0), time(14, 30), time(19, 0)]


async def create_sample_showings(days: int = 3):
    """Create showings for every movie/theater over the next few days"""
    created = []
    skipped = 0
    today = date.today()

    for day_offset in range(1, days + 1):
        show_date = today + timedelta(days=day_offset)
        for index, (theater_id, theater_name, template) in enumerate(THEATERS):
            for slot, show_time in enumerate(SHOW_TIMES):
                movie_id, movie_title = MOVIES[(index + slot + day_offset) % len(MOVIES)]
                data = ShowingCreate(
                    movie_id=movie_id,
                    movie_title=movie_title,
                    theater_id=theater_id,
                    theater_name=theater_name,
                    show_date=show_date,
                    show_time=show_time,
                    seat_map_template=template,
                )
                async with AsyncSessionLocal() as db:
                    try:
                        showing = await ShowingService.create_showing(db, data)
                    except ConflictError:
                        skipped += 1
                        continue
                created.append(showing)
                print(f"Created showing {showing.id}: {movie_title} @ {theater_name} {show_date} {show_time}")

    return created, skipped


async def seed_database():
    """Main seeding function"""
    print("Starting database seeding...")
    await init_db()

    print("\n=== Creating Showings ===")
    showings, skipped = await create_sample_showings()

    print("\n=== Seeding Complete! ===")
    print(f"Created {len(showings)} showings ({skipped} already existed)")

    print("\n=== Dev Tokens ===")
    print(f"user  (u1):    {create_access_token('u1')}")
    print(f"user  (u2):    {create_access_token('u2')}")
    print(f"admin (admin): {create_access_token('admin', role=ADMIN_ROLE)}")


if __name__ == "__main__":
    asyncio.run(seed_database())
