from sqlalchemy.dialects.postgresql import JSONB
from payledger.extensions import db

# JSONB on Postgres, plain JSON on SQLite (tests)
JSONType = db.JSON().with_variant(JSONB(), "postgresql")
