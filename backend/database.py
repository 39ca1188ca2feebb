from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for the record lookups and joins used by document generation."""
        try:
            # Primary lookups by string id (joins use these as foreignField)
            for collection in ("properties", "tenants", "leases", "rents", "inventories", "documents"):
                await self.db[collection].create_index("id", unique=True)

            # Owner profiles are joined on user_id
            try:
                await self.db.profiles.create_index("user_id", unique=True)
            except Exception:
                pass  # Index may already exist with different options

            await self.db.leases.create_index("owner_id")
            await self.db.leases.create_index("property_id")
            await self.db.rents.create_index([("lease_id", 1), ("period_start", -1)])
            await self.db.inventories.create_index("property_id")

            # Generated documents - owner listing, newest first
            await self.db.documents.create_index([("owner_id", 1), ("created_at", -1)])
            await self.db.documents.create_index([("lease_id", 1), ("document_type", 1)])

            # Message log indexes - for delivery lookups
            await self.db.message_logs.create_index([("created_at", -1)])
            await self.db.message_logs.create_index([("status", 1), ("created_at", -1)])
            await self.db.message_logs.create_index("provider_message_id", sparse=True)
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()
