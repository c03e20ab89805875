import os

# app.main builds a module-level app at import time; keep it off Firestore.
os.environ.setdefault("USE_INMEMORY", "1")
