# shelfboard/database/database.py
import asyncpg
import logging
from pathlib import Path
from typing import Optional
from ..config import Config
from ..exceptions import StorageError

class Database:
    """asyncpg connection pool with file-based migrations"""
    
    def __init__(self, url: Optional[str] = None):
        self.url = url or Config.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None
        self.logger = logging.getLogger(__name__)

    async def connect(self):
        """Open the pool and apply pending migrations"""
        if not self.url:
            raise StorageError("No DATABASE_URL configured")
        try:
            self.pool = await asyncpg.create_pool(
                self.url,
                min_size=Config.DB_POOL_MIN,
                max_size=Config.DB_POOL_MAX
            )
            
            await self._run_migrations()
            
            self.logger.info("Connected to database")
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error(f"Database connection failed: {e}")
            raise StorageError(f"Database connection failed: {e}") from e

    async def close(self):
        """Close the pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Database connection closed")

    async def _run_migrations(self):
        """Apply migrations/*.sql that have not run yet"""
        migrations_path = Path(__file__).parent / "migrations"
        
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    id SERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    applied_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                )
            """)
            
            for migration_file in sorted(migrations_path.glob("*.sql")):
                migration_name = migration_file.name
                
                is_applied = await conn.fetchval(
                    "SELECT COUNT(*) FROM migrations WHERE name = $1",
                    migration_name
                )
                
                if not is_applied:
                    async with conn.transaction():
                        await conn.execute(migration_file.read_text())
                        await conn.execute(
                            "INSERT INTO migrations (name) VALUES ($1)",
                            migration_name
                        )
                    
                    self.logger.info(f"Migration {migration_name} applied")
