# backend/wsgi.py
from caja import create_app

app = create_app()
