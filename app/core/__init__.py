from app.core.config import settings
from app.core.database import Base, get_db, engine, SessionLocal
