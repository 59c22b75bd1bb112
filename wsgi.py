"""
WSGI entry point for Classroom Ranks.

For gunicorn: wsgi:app
"""

# -------------------- APPLICATION FACTORY --------------------
from app import app

if __name__ == "__main__":
    app.run()
