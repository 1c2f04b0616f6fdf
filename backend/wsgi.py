# backend/wsgi.py
from pharmadist import create_app

app = create_app()
