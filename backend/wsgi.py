# backend/wsgi.py
from stampshop import create_app

app = create_app()
