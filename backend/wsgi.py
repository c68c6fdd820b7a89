# backend/wsgi.py
from hangar import create_app

app = create_app()
