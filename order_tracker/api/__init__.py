"""Order store service: FastAPI over async SQLAlchemy."""
