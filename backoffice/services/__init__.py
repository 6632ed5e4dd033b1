"""Business services. Each function takes the SQLAlchemy session as first argument."""
