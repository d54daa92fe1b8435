# backend/wsgi.py
from docflow import create_app

app = create_app()
