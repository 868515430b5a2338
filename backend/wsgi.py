# backend/wsgi.py
from vms import create_app

app = create_app()
