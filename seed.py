"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 1 admin, 3 shippers and 3 carriers (users with their profiles)
  - 9 vehicles spread over the carriers' fleets
  - saved addresses in Dakar, Thiès, Saint-Louis, Kaolack and Touba
"""

import asyncio

from sqlalchemy import text

from khidma.domain.entities import Coordinate
from khidma.domain.enums import UserRole, VehicleType
from khidma.infrastructure.database import async_session_factory, engine
from khidma.infrastructure.models import (
    CarrierModel,
    ShipperModel,
    UserModel,
    VehicleModel,
)
from khidma.services.geolocation import GeolocationService


USERS = [
    {"email": "admin@khidma.sn", "first_name": "Awa", "last_name": "Ndiaye", "role": UserRole.ADMIN},
    {"email": "moussa@sonacos.sn", "first_name": "Moussa", "last_name": "Diop", "role": UserRole.EXPEDITEUR, "company": "Huilerie du Cayor"},
    {"email": "fatou@batimat.sn", "first_name": "Fatou", "last_name": "Sarr", "role": UserRole.EXPEDITEUR, "company": "Batimat Thiès"},
    {"email": "ibrahima@gmail.com", "first_name": "Ibrahima", "last_name": "Fall", "role": UserRole.EXPEDITEUR, "company": None},
    {"email": "ousmane@transfleuve.sn", "first_name": "Ousmane", "last_name": "Ba", "role": UserRole.TRANSPORTEUR, "company": "Trans Fleuve", "license": "TR-DK-0142"},
    {"email": "aminata@sahel-logistique.sn", "first_name": "Aminata", "last_name": "Gueye", "role": UserRole.TRANSPORTEUR, "company": "Sahel Logistique", "license": "TR-TH-0087"},
    {"email": "cheikh@baol-transport.sn", "first_name": "Cheikh", "last_name": "Mbaye", "role": UserRole.TRANSPORTEUR, "company": "Baol Transport", "license": "TR-DB-0031"},
]

# carrier index (in USERS order of carriers) -> fleet
VEHICLES = [
    (0, VehicleType.CAMION_3T, "DK-1021-A", 3, 15, 45000),
    (0, VehicleType.CAMION_10T, "DK-2245-B", 10, 40, 90000),
    (0, VehicleType.SEMI_REMORQUE, "DK-7781-C", 30, 90, 180000),
    (1, VehicleType.FOURGON, "TH-0412-A", 2, 12, 35000),
    (1, VehicleType.CAMION_5T, "TH-1133-B", 5, 25, 60000),
    (1, VehicleType.BENNE, "TH-5590-C", 15, 12, 110000),
    (2, VehicleType.CITERNE, "DB-3307-A", 20, 25, 150000),
    (2, VehicleType.CAMION_20T, "DB-4410-B", 20, 70, 140000),
    (2, VehicleType.REMORQUE, "DB-6620-C", 25, 80, 160000),
]

# shipper index -> addresses
ADDRESSES = [
    (0, "Usine", "Dakar", "Dakar", "Route de Rufisque, km 4", 14.7167, -17.4000),
    (0, "Dépôt Thiès", "Thiès", "Thiès", "Zone industrielle", 14.7886, -16.9282),
    (0, "Entrepôt Kaolack", "Kaolack", "Kaolack", "Port de Kaolack", 14.1520, -16.0726),
    (1, "Carrière", "Thiès", "Thiès", "Route de Pout", 14.7700, -17.0500),
    (1, "Chantier Saint-Louis", "Saint-Louis", "Saint-Louis", "Sor", 16.0179, -16.4896),
    (2, "Domicile", "Dakar", "Dakar", "Plateau", 14.6928, -17.4467),
    (2, "Boutique Touba", "Touba", "Diourbel", "Marché Ocass", 14.8500, -15.8833),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users and profiles ────────────────────────────────────────
        shippers: list[tuple[UserModel, ShipperModel]] = []
        carriers: list[CarrierModel] = []
        for u in USERS:
            user = UserModel(
                email=u["email"],
                first_name=u["first_name"],
                last_name=u["last_name"],
                role=u["role"],
            )
            session.add(user)
            await session.flush()
            if u["role"] == UserRole.EXPEDITEUR:
                profile = ShipperModel(user_id=user.id, company_name=u["company"])
                session.add(profile)
                shippers.append((user, profile))
            elif u["role"] == UserRole.TRANSPORTEUR:
                profile = CarrierModel(
                    user_id=user.id,
                    company_name=u["company"],
                    license_number=u["license"],
                )
                session.add(profile)
                carriers.append(profile)
        await session.flush()
        print(f"  Created {len(USERS)} users ({len(shippers)} shippers, {len(carriers)} carriers)")

        # ── Vehicles ──────────────────────────────────────────────────
        for carrier_index, vehicle_type, plate, tons, volume, rate in VEHICLES:
            session.add(
                VehicleModel(
                    carrier_id=carriers[carrier_index].id,
                    vehicle_type=vehicle_type,
                    plate_number=plate,
                    capacity_tons=tons,
                    volume_m3=volume,
                    daily_rate=rate,
                )
            )
        await session.flush()
        print(f"  Created {len(VEHICLES)} vehicles")

        # ── Addresses ─────────────────────────────────────────────────
        geolocation = GeolocationService(session)
        for shipper_index, label, city, region, street, lat, lng in ADDRESSES:
            user, _ = shippers[shipper_index]
            await geolocation.add_address(
                user.id, label, city, Coordinate(lat, lng), street=street, region=region
            )
        print(f"  Created {len(ADDRESSES)} addresses")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
