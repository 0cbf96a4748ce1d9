# backend/wsgi.py
from localmart import create_app

app = create_app()
