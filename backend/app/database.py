"""
Configuration de la connexion à la base de données.
Un seul moteur SQLAlchemy partagé par les requêtes HTTP et les tâches de fond.
"""

from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from app.config import settings

# pool_pre_ping : le scheduler garde des connexions ouvertes entre deux cycles
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI : fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """
    Instant courant en UTC, sans tzinfo.
    Toutes les colonnes DateTime stockent de l'UTC naïf (PostgreSQL et SQLite).
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
