# backend/wsgi.py
from tabacaria import create_app

app = create_app()
